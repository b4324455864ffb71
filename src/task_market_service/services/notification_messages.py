"""Push notification texts.

Each builder returns a ``(title, body)`` pair. All user-facing wording for
task lifecycle events lives here.
"""

from __future__ import annotations


def new_task_available(*, task_title: str, price: str, task_address: str) -> tuple[str, str]:
    return (
        "New Task Available! \U0001f4bc",
        f'"{task_title}" near {task_address} pays ${price}. Tap to accept it first.',
    )


def task_accepted(*, tasker_name: str, task_title: str) -> tuple[str, str]:
    return (
        "Task Accepted! \U0001f389",
        f'{tasker_name} has accepted your task "{task_title}". '
        "They will start working on it soon.",
    )


def task_no_longer_available(*, task_title: str) -> tuple[str, str]:
    return (
        "Task No Longer Available",
        f'The task "{task_title}" has been accepted by another tasker. '
        "Keep looking for new opportunities!",
    )


def tasker_arrived(*, tasker_name: str, task_title: str) -> tuple[str, str]:
    return (
        "Tasker Has Arrived! \U0001f4cd",
        f'{tasker_name} has arrived at your location and is ready to start "{task_title}".',
    )


def task_started(*, tasker_name: str, task_title: str) -> tuple[str, str]:
    return (
        "Task Started \U0001f6e0️",
        f'{tasker_name} has started working on "{task_title}".',
    )


def task_ready_for_review(*, tasker_name: str, task_title: str, price: str) -> tuple[str, str]:
    return (
        "Task Ready for Review! \U0001f440",
        f'{tasker_name} has completed "{task_title}". Please review the work and '
        f"confirm completion to release payment of ${price}.",
    )


def awaiting_customer_approval(*, task_title: str, price: str) -> tuple[str, str]:
    return (
        "Awaiting Customer Approval ⏳",
        f'You\'ve marked "{task_title}" as complete. Waiting for customer to review and '
        f"approve. Payment of ${price} will be released upon approval.",
    )


def payment_released(*, task_title: str, price: str) -> tuple[str, str]:
    return (
        "Task Approved! Payment Released! \U0001f4b0",
        f'Great news! "{task_title}" has been approved by the customer. '
        f"Your payment of ${price} has been processed!",
    )


def task_completed(*, task_title: str) -> tuple[str, str]:
    return (
        "Task Completed Successfully! ✅",
        f'"{task_title}" has been marked as completed. Thank you!',
    )


def completion_disputed(*, task_title: str, reason: str) -> tuple[str, str]:
    return (
        "Completion Disputed ⚠️",
        f'The customer did not approve "{task_title}" ({reason}). '
        "Payment is on hold while the dispute is reviewed.",
    )


def dispute_opened(*, task_title: str) -> tuple[str, str]:
    return (
        "Dispute Opened",
        f'We received your dispute for "{task_title}". Your payment stays on hold '
        "until it is resolved.",
    )


def dispute_resolved(*, task_title: str, resolution: str) -> tuple[str, str]:
    if resolution == "capture":
        outcome = "The payment has been released to the tasker."
    else:
        outcome = "The payment hold has been released back to the customer."
    return ("Dispute Resolved", f'The dispute for "{task_title}" has been resolved. {outcome}')


def task_cancelled(*, canceller_name: str, task_title: str, reason: str) -> tuple[str, str]:
    return (
        "Task Cancelled ❌",
        f'{canceller_name} has cancelled the task "{task_title}". Reason: {reason}',
    )
