"""
Interpretation of free-text output from cargo-stylus and cast

The CLIs have no structured output and no exit codes that separate
"nothing to do" from a real failure, so every phrase the pipeline
reacts to lives here.
"""

import re
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from deployer.models import Step

ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]")

# Bounded on both sides so the first 40 digits of a tx hash never match
ADDRESS_PATTERN = re.compile(r"(?<![0-9a-zA-Z])(0x[0-9a-fA-F]{40})(?![0-9a-fA-F])")
TX_HASH_PATTERN = re.compile(r"(?<![0-9a-zA-Z])(0x[0-9a-fA-F]{64})(?![0-9a-fA-F])")
RECEIPT_STATUS_PATTERN = re.compile(r"^\s*status\s+(\d+)", re.MULTILINE | re.IGNORECASE)
RECEIPT_TX_HASH_PATTERN = re.compile(r"^\s*transactionHash\s+(0x[0-9a-fA-F]{64})(?![0-9a-fA-F])", re.MULTILINE)

BENIGN_PATTERNS: Dict[Step, Tuple[Tuple[str, str], ...]] = {
    Step.ACTIVATE: (
        ("programuptodate", "program already activated"),
        ("already up to date", "program already activated"),
        ("already activated", "program already activated"),
    ),
    Step.FACTORY_ACTIVATE: (
        ("programuptodate", "factory already activated"),
        ("already up to date", "factory already activated"),
        ("already activated", "factory already activated"),
    ),
    Step.CACHE_BID: (
        ("already cached", "program already cached"),
    ),
}

DUPLICATE_REGISTRATION_PATTERNS = (
    "already registered",
    "tokenalreadyregistered",
    "tokenalreadyexists",
)

NOT_REGISTERED_PATTERNS = ("tokennotfound", "error")

REVERT_HINTS = (
    "\nPossible causes:\n"
    "1. Token already registered in factory\n"
    "2. Invalid parameters (empty name/symbol, zero supply, zero address)\n"
    "3. Factory contract not properly activated\n"
    "4. Token contract not fully initialized"
)


@dataclass(frozen=True)
class Classification:
    """Verdict for a failed command: fatal, or benign with a reason"""
    fatal: bool
    reason: Optional[str] = None

    @property
    def benign(self) -> bool:
        return not self.fatal


FATAL = Classification(fatal=True)


def strip_ansi(text: str) -> str:
    return ANSI_ESCAPE.sub("", text or "")


def extract_address(text: str) -> Optional[str]:
    """First 0x-prefixed 40 hex digit token in the text, case preserved"""
    match = ADDRESS_PATTERN.search(strip_ansi(text))
    return match.group(1) if match else None


def extract_transaction_hash(text: str) -> Optional[str]:
    """First 0x-prefixed 64 hex digit token in the text"""
    match = TX_HASH_PATTERN.search(strip_ansi(text))
    return match.group(1) if match else None


def extract_receipt_transaction_hash(text: str) -> Optional[str]:
    """The `transactionHash` line of a printed receipt, else the first hash-shaped token"""
    match = RECEIPT_TX_HASH_PATTERN.search(strip_ansi(text))
    if match:
        return match.group(1)
    return extract_transaction_hash(text)


def classify(stderr: str, step: Step) -> Classification:
    """Decide whether a failed step can be ignored.

    Only activation and cache-bid have known no-op phrasings; every
    other failure is fatal.
    """
    lowered = strip_ansi(stderr).lower()
    for needle, reason in BENIGN_PATTERNS.get(step, ()):
        if needle in lowered:
            return Classification(fatal=False, reason=reason)
    return FATAL


def has_contract_code(code_output: str) -> bool:
    """False when `cast code` printed nothing or a bare 0x"""
    code = strip_ansi(code_output).strip()
    return len(code) > 2 and code.lower() != "0x"


def is_registered(view_output: str) -> bool:
    """Read a `get_token_info(address)` result from the factory.

    Empty output, an error mention or an all-zero record means the
    factory holds nothing for the token.
    """
    text = strip_ansi(view_output).strip()
    if not text:
        return False
    lowered = text.lower()
    if any(needle in lowered for needle in NOT_REGISTERED_PATTERNS):
        return False
    digits = lowered[2:] if lowered.startswith("0x") else lowered
    digits = re.sub(r"[\s,()\[\]]", "", digits)
    return bool(digits) and set(digits) != {"0"}


def mentions_duplicate_registration(text: str) -> bool:
    lowered = strip_ansi(text).lower()
    return any(needle in lowered for needle in DUPLICATE_REGISTRATION_PATTERNS)


def receipt_status(receipt_output: str) -> Optional[bool]:
    """True/False from the `status` line of `cast receipt`, None if absent"""
    match = RECEIPT_STATUS_PATTERN.search(strip_ansi(receipt_output))
    if not match:
        return None
    return match.group(1) != "0"


def with_revert_hints(error_text: str) -> str:
    if "execution reverted" in error_text.lower():
        return error_text + REVERT_HINTS
    return error_text
