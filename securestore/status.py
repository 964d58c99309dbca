"""Vault outcome codes and the attribute names used to build vault queries."""

SUCCESS = 0
BAD_PARAMETER = -50
IO_ERROR = -36
NOT_AVAILABLE = -25291
DUPLICATE_ITEM = -25299
ITEM_NOT_FOUND = -25300

CLASS = "class"
CLASS_GENERIC_PASSWORD = "genp"
ACCOUNT = "acct"
VALUE_DATA = "v_Data"
MATCH_LIMIT = "m_Limit"
MATCH_LIMIT_ONE = "m_LimitOne"
RETURN_ATTRIBUTES = "r_Attributes"
RETURN_DATA = "r_Data"

_descriptions = {
    SUCCESS: "No error.",
    BAD_PARAMETER: "One or more parameters passed to the vault were not valid.",
    IO_ERROR: "The vault could not read or write its storage.",
    NOT_AVAILABLE: "No vault is available.",
    DUPLICATE_ITEM: "The specified item already exists in the vault.",
    ITEM_NOT_FOUND: "The specified item could not be found in the vault.",
}


def describe_status(status: int) -> str:
    return _descriptions.get(status, f"Unknown vault status {status}.")


def search_query(key: str) -> dict:
    return {CLASS: CLASS_GENERIC_PASSWORD, ACCOUNT: key}


def add_query(key: str, payload: bytes) -> dict:
    query = search_query(key)
    query[VALUE_DATA] = payload
    return query


def fetch_query(key: str) -> dict:
    query = search_query(key)
    query.update({MATCH_LIMIT: MATCH_LIMIT_ONE, RETURN_ATTRIBUTES: True, RETURN_DATA: True})
    return query


def update_attributes(payload: bytes) -> dict:
    return {VALUE_DATA: payload}
