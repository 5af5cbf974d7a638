from sqlalchemy import func, select, update

from adsentry.db.tables import alerts, notifications_outbox, user_prefs
from adsentry.logic.alerts import AlertDispatcher, build_alert_text, build_notification
from adsentry.logic.anomalies import Anomaly
from adsentry.logic.detection_settings import DetectionSettings

from conftest import NOW, PROFILE_ID, USER_ID


def make_anomaly(severity="warn", profile_id=PROFILE_ID):
    return Anomaly(
        profile_id=profile_id,
        scope="campaign",
        entity_id="C1",
        metric="cvr",
        time_window="daily",
        ts=NOW,
        value=1.5,
        baseline=4.25,
        mad=0.5,
        score=-3.71,
        direction="dip",
        severity=severity,
        fingerprint="abc",
        id=7,
    )


def count_rows(engine, table):
    with engine.connect() as conn:
        return conn.execute(select(func.count()).select_from(table)).scalar_one()


def test_alert_text():
    title, message = build_alert_text(make_anomaly())
    assert title == "CVR dip detected"
    assert message == "campaign C1 shows cvr dip of 1.50 vs baseline 4.25 (z-score: -3.71)"


def test_notification_text():
    subject, body = build_notification(make_anomaly("critical"))
    assert subject == "CRITICAL: CVR dip"
    assert body.startswith("Anomaly detected in campaign C1:\n\ncvr: 1.50 (baseline: 4.25)")
    assert body.endswith("Severity: critical")


def test_unknown_owner_is_not_fatal(engine, clock):
    assert AlertDispatcher(engine, clock=clock).dispatch(make_anomaly(profile_id="nobody")) is None
    assert count_rows(engine, alerts) == 0


def test_alert_without_channels_queues_nothing(connected_engine, clock):
    with connected_engine.begin() as conn:
        conn.execute(update(user_prefs).values(email=None, slack_webhook=None))
    alert_id = AlertDispatcher(connected_engine, clock=clock).dispatch(make_anomaly())
    assert alert_id is not None
    assert count_rows(connected_engine, notifications_outbox) == 0
    with connected_engine.connect() as conn:
        alert = conn.execute(select(alerts)).mappings().one()
    assert alert["rule_id"] is None
    assert alert["data"]["anomaly_id"] == 7
    assert alert["state"] == "new"


def test_notify_flags_gate_only_the_outbox(connected_engine, clock):
    settings = DetectionSettings(notify_on_warn=False)
    dispatcher = AlertDispatcher(connected_engine, clock=clock)
    assert dispatcher.dispatch(make_anomaly("warn"), settings=settings) is not None
    assert count_rows(connected_engine, notifications_outbox) == 0
    dispatcher.dispatch(make_anomaly("critical"), settings=settings)
    assert count_rows(connected_engine, alerts) == 2
    with connected_engine.connect() as conn:
        rows = conn.execute(select(notifications_outbox.c.user_id, notifications_outbox.c.channel)).all()
    assert sorted(rows) == [(USER_ID, "email"), (USER_ID, "slack")]


def test_info_is_never_dispatched(connected_engine, clock):
    assert AlertDispatcher(connected_engine, clock=clock).dispatch(make_anomaly("info")) is None
