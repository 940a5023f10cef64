"""
Ticket Notification Content — Title, body and data payload per event.

Titles are shown to Estonian-speaking staff; the body identifies the
ticket by number, problem type and location.
"""

from ticket_push.models.tickets import NotificationType, Ticket

NOTIFICATION_TITLES = {
    NotificationType.CREATED: "Uus pilet",
    NotificationType.UPDATED: "Pilet uuendatud",
    NotificationType.ASSIGNED: "Pilet määratud",
    NotificationType.RESOLVED: "Pilet lahendatud",
    NotificationType.VERIFIED: "Pilet kinnitatud",
    NotificationType.CLOSED: "Pilet suletud",
}
DEFAULT_TITLE = "Teavitus"

CLICK_ACTION = "FLUTTER_NOTIFICATION_CLICK"


def build_ticket_notification(
    ticket: Ticket,
    notification_type: NotificationType | str,
) -> tuple[str, str, dict[str, str]]:
    """
    Build the notification for a ticket event.

    Returns:
        (title, body, data) where data carries ticketId, ticketNumber,
        the event type tag, and the client click action.
    """
    try:
        kind = NotificationType(notification_type)
    except ValueError:
        kind = None

    title = NOTIFICATION_TITLES.get(kind, DEFAULT_TITLE)
    type_tag = kind.value if kind else str(notification_type)
    number = "" if ticket.ticket_number is None else str(ticket.ticket_number)

    body = f"#{number}: {ticket.problem_type_name} - {ticket.location}"
    data = {
        "ticketId": ticket.id,
        "ticketNumber": number,
        "type": type_tag,
        "click_action": CLICK_ACTION,
    }
    return title, body, data
