from __future__ import annotations

from typing import TYPE_CHECKING, Union

from shared.envelope import Reply
from shared.log import get_logger

if TYPE_CHECKING:
    from deepbot.dispatcher import ReplySlot
    from deepbot.ws_client import BotSession

logger = get_logger(__name__)


class MessageRouter:
    """
    Classifies inbound frames.

    Register replies update the session's authentication state; every other
    reply goes to the dispatcher's reply slot, which hands it to the waiting
    call when the function tag matches.
    """

    def __init__(self, session: "BotSession", slot: "ReplySlot") -> None:
        self.session = session
        self.slot = slot

    def route(self, raw: Union[str, bytes]) -> bool:
        """
        Route one frame.

        Returns True if the frame was consumed (handshake applied or reply
        delivered), False if it was discarded. Raises BadFrameError for a
        frame that is not a reply envelope.
        """
        reply = Reply.from_json(raw)

        if reply.is_register:
            self.session.handle_register_reply(reply.msg)
            return True

        delivered = self.slot.deliver(reply)
        if not delivered:
            logger.debug("Unsolicited %s frame ignored", reply.function, extra={"function": reply.function})
        return delivered
