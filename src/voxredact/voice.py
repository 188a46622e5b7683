"""Spoken-command handling.

Turns free-form utterances into redaction policies. A
:class:`CommandInterpreter` maps an utterance to categories by
case-insensitive *substring* keywords: recall is preferred over precision,
so "card number" activates both ``CREDIT_CARD`` and ``PHONE``. A
:class:`VoiceCommandListener` pulls utterances from a transcription engine
and applies matches to a :class:`~voxredact.policy.PolicyStore`.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, FrozenSet, Optional, Protocol, Sequence, Tuple

import regex as re

from voxredact.errors import NoSpeechDetected, TranscriptionError, TranscriptionTimeout
from voxredact.logging import get_logger
from voxredact.policy import ActivePolicy, Category, PolicyStore

logger = get_logger(__name__)


# "all" next to a category narrows to it ("redact all emails" is EMAIL only);
# a bare "all" with no category keyword ("redact all") means everything.
ALL_KEYWORDS: Tuple[str, ...] = (
    "everything",
    "all pii",
    "all personal",
    "all sensitive",
    "all info",
    "all data",
)

CANCEL_KEYWORDS: Tuple[str, ...] = ("cancel", "never mind", "nevermind", "stop listening")

BARE_ALL_RE = re.compile(r"\ball\b")

CATEGORY_KEYWORDS: Dict[Category, Tuple[str, ...]] = {
    Category.EMAIL: ("email", "e-mail"),
    Category.PHONE: ("phone", "number", "mobile"),
    Category.NATIONAL_ID: ("ssn", "social", "national id"),
    Category.IBAN: ("iban", "bank account"),
    Category.CREDIT_CARD: ("credit card", "card number"),
}


class InterpretationKind(str, Enum):
    MATCH = "match"
    NO_MATCH = "no_match"
    CANCEL = "cancel"


@dataclass(frozen=True)
class Interpretation:
    kind: InterpretationKind
    categories: FrozenSet[Category] = field(default_factory=frozenset)
    utterance: str = ""

    @property
    def matched(self) -> bool:
        return self.kind == InterpretationKind.MATCH


NO_MATCH = Interpretation(InterpretationKind.NO_MATCH)


class CommandInterpreter:
    """Keyword-to-category mapping for utterances."""

    def __init__(
        self,
        keywords: Optional[Dict[Category, Sequence[str]]] = None,
        all_keywords: Sequence[str] = ALL_KEYWORDS,
        cancel_keywords: Sequence[str] = CANCEL_KEYWORDS,
    ) -> None:
        self.keywords = {
            cat: tuple(k.lower() for k in kws)
            for cat, kws in (keywords or CATEGORY_KEYWORDS).items()
        }
        self.all_keywords = tuple(k.lower() for k in all_keywords)
        self.cancel_keywords = tuple(k.lower() for k in cancel_keywords)

    def interpret(self, utterance: Optional[str]) -> Interpretation:
        command = (utterance or "").strip().lower()
        if not command:
            return NO_MATCH
        if any(k in command for k in self.cancel_keywords):
            return Interpretation(InterpretationKind.CANCEL, utterance=command)
        if any(k in command for k in self.all_keywords):
            return Interpretation(
                InterpretationKind.MATCH, frozenset({Category.ALL}), command
            )
        matched = frozenset(
            cat for cat, kws in self.keywords.items() if any(k in command for k in kws)
        )
        if not matched:
            if BARE_ALL_RE.search(command):
                return Interpretation(
                    InterpretationKind.MATCH, frozenset({Category.ALL}), command
                )
            return Interpretation(InterpretationKind.NO_MATCH, utterance=command)
        return Interpretation(InterpretationKind.MATCH, matched, command)

    def apply(self, utterance: Optional[str], store: PolicyStore) -> Interpretation:
        """Interpret ``utterance`` and, on a match, replace the store's policy."""
        result = self.interpret(utterance)
        if result.matched:
            store.set(result.categories)
        else:
            logger.info(
                "Command left policy unchanged",
                extra={"extra": {"kind": result.kind.value, "utterance": result.utterance}},
            )
        return result


class Transcriber(Protocol):
    def listen(self, timeout: Optional[float] = None) -> str:
        ...


class ConsoleTranscriber:
    """Reads typed utterances, standing in for a speech engine in a terminal."""

    def __init__(self, prompt: str = "command> ", reader: Callable[[str], str] = input):
        self.prompt = prompt
        self.reader = reader
        self.closed = False

    def listen(self, timeout: Optional[float] = None) -> str:
        try:
            text = self.reader(self.prompt)
        except EOFError as exc:
            self.closed = True
            raise NoSpeechDetected("input closed") from exc
        if not text.strip():
            raise NoSpeechDetected("empty utterance")
        return text


class VoiceCommandListener:
    """Bridges a transcription engine to the policy store.

    ``listen_once`` performs one blocking listen. ``start`` / ``stop`` run it
    in a background loop until a cancel command, ``stop()``, or input closes.
    """

    def __init__(
        self,
        transcriber: Transcriber,
        store: PolicyStore,
        interpreter: Optional[CommandInterpreter] = None,
        timeout: Optional[float] = 10.0,
        on_result: Optional[Callable[[Interpretation], None]] = None,
    ) -> None:
        self.transcriber = transcriber
        self.store = store
        self.interpreter = interpreter or CommandInterpreter()
        self.timeout = timeout
        self.on_result = on_result
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def policy(self) -> ActivePolicy:
        return self.store.snapshot()

    def listen_once(self) -> Interpretation:
        try:
            utterance = self.transcriber.listen(self.timeout)
        except (NoSpeechDetected, TranscriptionTimeout) as exc:
            logger.info("No command heard", extra={"extra": {"reason": str(exc)}})
            return NO_MATCH
        except TranscriptionError as exc:
            logger.warning("Transcription failed", exc_info=exc)
            return NO_MATCH
        result = self.interpreter.apply(utterance, self.store)
        if self.on_result is not None:
            self.on_result(result)
        return result

    def _loop(self) -> None:
        while not self._stop.is_set():
            result = self.listen_once()
            if result.kind == InterpretationKind.CANCEL:
                break
            if getattr(self.transcriber, "closed", False):
                break
        self._stop.set()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="listener", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()

    @property
    def listening(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)


__all__ = [
    "ALL_KEYWORDS",
    "CANCEL_KEYWORDS",
    "CATEGORY_KEYWORDS",
    "InterpretationKind",
    "Interpretation",
    "NO_MATCH",
    "CommandInterpreter",
    "Transcriber",
    "ConsoleTranscriber",
    "VoiceCommandListener",
]
