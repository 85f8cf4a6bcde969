"""Revert string classification."""

import pytest

from eth_permit.revert_reason import PermitRevertReason, parse_permit_revert_reason
from eth_permit.trace import TransactionAssertionError


@pytest.mark.parametrize(
    "revert_reason, expected",
    [
        ("execution reverted: EXPIRED", PermitRevertReason.expired),
        ("execution reverted: INVALID_SIGNATURE", PermitRevertReason.invalid_signature),
        ("VM Exception while processing transaction: revert EXPIRED", PermitRevertReason.expired),
        ("execution reverted: 'INVALID_SIGNATURE'", PermitRevertReason.invalid_signature),
        ("INVALID_SIGNATURE\n", PermitRevertReason.invalid_signature),
        ("execution reverted: ERC20: insufficient allowance", None),
        ("execution reverted: NOT_EXPIRED", None),
        ("", None),
        (None, None),
    ],
)
def test_parse_permit_revert_reason(revert_reason, expected):
    assert parse_permit_revert_reason(revert_reason) == expected


def test_assertion_error_carries_reason():
    e = TransactionAssertionError("Transaction failed", revert_reason="execution reverted: EXPIRED")
    assert isinstance(e, AssertionError)
    assert e.permit_revert_reason == PermitRevertReason.expired

    e = TransactionAssertionError("Transaction failed")
    assert e.permit_revert_reason is None
