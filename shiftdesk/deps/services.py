from fastapi.requests import HTTPConnection

from shiftdesk.services.live_sync import LiveSyncNotifier
from shiftdesk.services.shift_service import ShiftService


def get_shift_service(connection: HTTPConnection) -> ShiftService:
    return connection.app.state.shift_service


def get_live_notifier(connection: HTTPConnection) -> LiveSyncNotifier:
    return connection.app.state.live_notifier
