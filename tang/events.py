"""Dispatch of incoming GitHub events."""

import logging
import threading
from typing import Any, Optional

from .models import BuildStatus, PushEvent
from .pipeline import Pipeline

logger = logging.getLogger(__name__)


def handle_event(event_type: str, payload: dict[str, Any], pipeline: Pipeline) -> Optional[BuildStatus]:
    """
    Handle one GitHub event.

    Only pushes that do not delete a ref reach the pipeline; everything else
    is logged and ignored. Raises pydantic.ValidationError for a malformed push
    payload and lets pipeline errors propagate.
    """
    if event_type != "push":
        logger.info(f"Unhandled event: {event_type}")
        return None

    event = PushEvent.model_validate(payload)
    logger.info(f"Received PushEvent {event!r}")

    if event.deleted:
        # Branch deletion arrives as a push with after = 0000...
        logger.info(f"Ignoring deletion of {event.ref} in {event.full_name}")
        return None

    return pipeline.run(event)


def handle_event_in_background(event_type: str, payload: dict[str, Any], pipeline: Pipeline) -> None:
    """handle_event for a detached build: errors are logged, never raised."""
    try:
        handle_event(event_type, payload, pipeline)
    except Exception as e:
        logger.exception(f"Error processing {event_type} {payload!r}: {e}")


def start_in_background(event_type: str, payload: dict[str, Any], pipeline: Pipeline) -> threading.Thread:
    """
    Handle an event on its own daemon thread, detached from the request.

    Shutting the server down does not wait for these threads, so a reload
    re-executes straight away and abandons any build still running.
    """
    thread = threading.Thread(
        target=handle_event_in_background,
        args=(event_type, payload, pipeline),
        name=f"build-{event_type}",
        daemon=True,
    )
    thread.start()
    return thread
