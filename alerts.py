from datetime import date
from typing import Iterable, Optional

from models import AlertSeverity, NotificationPreferences, Transaction, TransactionType
from schemas import AppNotification

DEFAULT_WINDOW_DAYS = 3

_SEVERITY_ORDER = {
    AlertSeverity.danger: 0,
    AlertSeverity.warning: 1,
    AlertSeverity.info: 2,
    AlertSeverity.success: 3,
}


def _plural_days(count: int) -> str:
    return "1 dia" if count == 1 else f"{count} dias"


def classify_due(txn: Transaction, today: date, window_days: int) -> Optional[AppNotification]:
    """Notification for one transaction, or ``None`` when nothing is due."""
    if txn.is_paid or txn.type != TransactionType.expense:
        return None
    diff_days = (txn.date - today).days
    if diff_days < 0:
        return AppNotification(
            id=f"overdue-{txn.id}",
            title="Conta Atrasada!",
            message=f'A conta "{txn.description}" venceu há {_plural_days(-diff_days)}.',
            type=AlertSeverity.danger,
            date=txn.date,
            transaction_id=txn.id,
        )
    if diff_days == 0:
        return AppNotification(
            id=f"today-{txn.id}",
            title="Vence Hoje",
            message=f'A conta "{txn.description}" vence hoje.',
            type=AlertSeverity.warning,
            date=txn.date,
            transaction_id=txn.id,
        )
    if diff_days <= window_days:
        return AppNotification(
            id=f"soon-{txn.id}",
            title="Vence em Breve",
            message=f'"{txn.description}" vence em {_plural_days(diff_days)}.',
            type=AlertSeverity.info,
            date=txn.date,
            transaction_id=txn.id,
        )
    return None


def _enabled(alert: AppNotification, prefs: Optional[NotificationPreferences]) -> bool:
    if prefs is None:
        return True
    if alert.type == AlertSeverity.danger:
        return prefs.alert_overdue
    if alert.type in (AlertSeverity.warning, AlertSeverity.info):
        return prefs.alert_upcoming
    return prefs.alert_recurring


def sort_notifications(alerts: Iterable[AppNotification]) -> list[AppNotification]:
    return sorted(alerts, key=lambda a: (_SEVERITY_ORDER[a.type], a.date, a.id))


def check_upcoming_alerts(
    transactions: Iterable[Transaction],
    today: date,
    *,
    window_days: int = DEFAULT_WINDOW_DAYS,
    preferences: Optional[NotificationPreferences] = None,
) -> list[AppNotification]:
    alerts: dict[str, AppNotification] = {}
    for txn in transactions:
        alert = classify_due(txn, today, window_days)
        if alert is not None and _enabled(alert, preferences):
            alerts[alert.id] = alert
    return sort_notifications(alerts.values())


def recurring_notifications(
    generated: Iterable[Transaction],
    preferences: Optional[NotificationPreferences] = None,
) -> list[AppNotification]:
    """One ``success`` notice per transaction materialized from a template."""
    if preferences is not None and not preferences.alert_recurring:
        return []
    return [
        AppNotification(
            id=f"recurring-{txn.id}",
            title="Lançamento Automático",
            message=f'"{txn.description}" foi lançado para {txn.date.strftime("%d/%m/%Y")}.',
            type=AlertSeverity.success,
            date=txn.date,
            transaction_id=txn.id,
        )
        for txn in generated
    ]
