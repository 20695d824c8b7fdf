"""TwiMLRenderer — turns an AgentReply into a Twilio Voice document.

Layouts by next action::

  gather:    <Say>text</Say>
             <Gather input="speech" action=... method="POST">
               <Say>Please speak your response.</Say>
             </Gather>
             <Say>I didn't hear anything...</Say>  + transfer block

  transfer:  <Say>text</Say>  + transfer block

  hangup:    <Say>text</Say>
             <Hangup/>

The transfer block is a hold message, a <Dial> to the clinic line, and an
apology followed by <Hangup/> for when the dial leg fails or is not answered.

Protocol reference:
  https://www.twilio.com/docs/voice/twiml
"""

from __future__ import annotations

from xml.etree.ElementTree import Element, SubElement, tostring

from clinic_booking.config import Settings
from clinic_booking.engine import AgentReply, NextAction

GATHER_PROMPT = "Please speak your response."
NO_INPUT_TEXT = "I didn't hear anything. Let me transfer you to our staff."
HOLD_TEXT = "Please hold while I connect you."
DIAL_FAILED_TEXT = (
    "I'm sorry, no one is available to take your call right now. "
    "Please call back during office hours. Goodbye."
)


def _to_xml(response_el: Element) -> str:
    return tostring(response_el, encoding="unicode", xml_declaration=True)


class TwiMLRenderer:
    """Stateless TwiML builder configured once per app.

    Usage::

        renderer = TwiMLRenderer.from_settings(settings)
        twiml = renderer.render(result.reply)
    """

    def __init__(
        self,
        transfer_number: str,
        action_url: str = "/twilio/voice",
        voice: str = "alice",
        gather_timeout: int = 10,
        speech_timeout: int = 3,
        dial_timeout: int = 30,
    ):
        self.transfer_number = transfer_number
        self.action_url = action_url
        self.voice = voice
        self.gather_timeout = gather_timeout
        self.speech_timeout = speech_timeout
        self.dial_timeout = dial_timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "TwiMLRenderer":
        return cls(
            transfer_number=settings.clinic_transfer_number,
            action_url=settings.webhook_url,
            voice=settings.tts_voice,
            gather_timeout=settings.gather_timeout,
            speech_timeout=settings.speech_timeout,
            dial_timeout=settings.dial_timeout,
        )

    def _say(self, parent: Element, text: str) -> Element:
        say_el = SubElement(parent, "Say")
        say_el.set("voice", self.voice)
        say_el.text = text
        return say_el

    def _transfer_block(self, response_el: Element) -> None:
        self._say(response_el, HOLD_TEXT)
        dial_el = SubElement(response_el, "Dial")
        dial_el.set("timeout", str(self.dial_timeout))
        number_el = SubElement(dial_el, "Number")
        number_el.text = self.transfer_number
        self._say(response_el, DIAL_FAILED_TEXT)
        SubElement(response_el, "Hangup")

    def render(self, reply: AgentReply) -> str:
        """Render ``reply`` as a complete TwiML document."""
        response_el = Element("Response")
        self._say(response_el, reply.text)

        if reply.action is NextAction.HANGUP:
            SubElement(response_el, "Hangup")
        elif reply.action is NextAction.TRANSFER:
            self._transfer_block(response_el)
        else:
            gather_el = SubElement(response_el, "Gather")
            gather_el.set("input", "speech")
            gather_el.set("timeout", str(self.gather_timeout))
            gather_el.set("speechTimeout", str(self.speech_timeout))
            gather_el.set("action", self.action_url)
            gather_el.set("method", "POST")
            self._say(gather_el, GATHER_PROMPT)
            self._say(response_el, NO_INPUT_TEXT)
            self._transfer_block(response_el)

        return _to_xml(response_el)

    def render_hangup(self, text: str) -> str:
        """Say ``text`` and end the call."""
        response_el = Element("Response")
        self._say(response_el, text)
        SubElement(response_el, "Hangup")
        return _to_xml(response_el)

    @staticmethod
    def render_neutral() -> str:
        """Empty ``<Response/>``: Twilio does nothing further with the call."""
        return _to_xml(Element("Response"))
