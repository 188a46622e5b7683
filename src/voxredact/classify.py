"""Deterministic token classifier.

Each category owns a recognizer built on the third-party ``regex`` package.
A token is redacted when the policy holds ``ALL`` or when the token text
*contains* a match for any recognizer of a category in the policy.

Matching is done on one OCR token at a time. Known precision properties:

- ``PHONE`` needs the whole number inside one token, so ``(415) 555-0123``
  split by the detector into two tokens is not matched.
- ``NATIONAL_ID`` follows the US SSN shape without word boundaries, so any run
  of nine or more digits (a bare phone number included) also matches.
"""

from typing import Callable, Dict, Set

import regex as re

from voxredact.errors import ClassificationError
from voxredact.policy import ActivePolicy, Category


EMAIL_RE = re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.I)
PHONE_RE = re.compile(r"(?:\+\d{1,3}[- ]?)?\(?\d{3}\)?[- ]?\d{3}[- ]?\d{4}")
NATIONAL_ID_RE = re.compile(r"\d{3}[- ]?\d{2}[- ]?\d{4}")
IBAN_RE = re.compile(r"[A-Z]{2}\d{2}[A-Z0-9]{11,30}", re.I)
CREDIT_RE = re.compile(r"(?:\d[ -]?){12,18}\d")


RECOGNIZERS: Dict[Category, Callable[[str], bool]] = {
    Category.EMAIL: lambda text: EMAIL_RE.search(text) is not None,
    Category.PHONE: lambda text: PHONE_RE.search(text) is not None,
    Category.NATIONAL_ID: lambda text: NATIONAL_ID_RE.search(text) is not None,
    Category.IBAN: lambda text: IBAN_RE.search(text) is not None,
    Category.CREDIT_CARD: lambda text: CREDIT_RE.search(text) is not None,
}


def classify(token_text: str, policy: ActivePolicy) -> bool:
    """Return True if a token should be redacted under ``policy``.

    Parameters
    ----------
    token_text:
        Text of a single detected token.
    policy:
        Snapshot of the active categories.

    Raises
    ------
    ClassificationError
        If a recognizer fails. Recognizers are pure, so this signals a defect.
    """
    if policy.redacts_everything:
        return True
    text = token_text or ""
    for category in policy.categories:
        recognizer = RECOGNIZERS.get(category)
        if recognizer is None:
            continue
        try:
            if recognizer(text):
                return True
        except Exception as exc:
            raise ClassificationError(
                f"Recognizer for {category.value} failed on {text!r}"
            ) from exc
    return False


def matching_categories(token_text: str, policy: ActivePolicy) -> Set[Category]:
    """Return every policy category whose recognizer matches ``token_text``."""
    if policy.redacts_everything:
        return {Category.ALL}
    text = token_text or ""
    return {c for c in policy.categories if c in RECOGNIZERS and RECOGNIZERS[c](text)}
