"""Vault backends: the four primitives (add, update, fetch, delete) the client is built on.

Backends speak the vault's native vocabulary: queries are dicts keyed by the
attribute names in :mod:`securestore.status` and every primitive answers with a
numeric status code instead of raising.
"""

import os
import threading
from abc import ABC, abstractmethod
from typing import Optional, Tuple

from sqlalchemy import Column, LargeBinary, String, create_engine, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .log import get_logger
from .status import (
    ACCOUNT,
    BAD_PARAMETER,
    CLASS,
    CLASS_GENERIC_PASSWORD,
    DUPLICATE_ITEM,
    IO_ERROR,
    ITEM_NOT_FOUND,
    NOT_AVAILABLE,
    RETURN_ATTRIBUTES,
    RETURN_DATA,
    SUCCESS,
    VALUE_DATA,
)

root_path = os.getcwd()
vaults_folder = os.path.join(root_path, "vaults")
Base = declarative_base()


def set_root_path(path: str):
    global root_path, vaults_folder
    root_path = path
    vaults_folder = os.path.join(root_path, "vaults")
    os.makedirs(vaults_folder, exist_ok=True)
    get_logger().info(f"Root path set to: {root_path}, vaults folder: {vaults_folder}")


class VaultBackend(ABC):
    """Interface every vault implements. Primitives report a status code and never raise."""

    @abstractmethod
    def add(self, query: dict) -> int:
        """Create the record described by ``query``."""

    @abstractmethod
    def update(self, query: dict, attributes: dict) -> int:
        """Replace ``attributes`` of the record matching ``query``."""

    @abstractmethod
    def fetch(self, query: dict) -> Tuple[int, Optional[dict]]:
        """Find the record matching ``query``; the dict holds what the query asked to return."""

    @abstractmethod
    def delete(self, query: dict) -> int:
        """Remove the record matching ``query``."""

    @staticmethod
    def account_of(query: dict) -> Optional[str]:
        """The record key a query targets, or None if the query is not a valid search."""
        if query.get(CLASS) != CLASS_GENERIC_PASSWORD:
            return None
        account = query.get(ACCOUNT)
        return account if isinstance(account, str) else None

    @staticmethod
    def fetch_result(query: dict, account: str, payload: bytes) -> dict:
        result = {}
        if query.get(RETURN_ATTRIBUTES):
            result.update({CLASS: CLASS_GENERIC_PASSWORD, ACCOUNT: account})
        if query.get(RETURN_DATA):
            result[VALUE_DATA] = payload
        return result


class MemoryVaultBackend(VaultBackend):
    """Process-local vault kept in a dict. Nothing survives the process."""

    __slots__ = {"_items", "_lock"}

    def __init__(self):
        self._items = {}
        self._lock = threading.Lock()

    def add(self, query: dict) -> int:
        account = self.account_of(query)
        payload = query.get(VALUE_DATA)
        if account is None or not isinstance(payload, bytes):
            return BAD_PARAMETER
        with self._lock:
            if account in self._items:
                return DUPLICATE_ITEM
            self._items[account] = payload
        return SUCCESS

    def update(self, query: dict, attributes: dict) -> int:
        account = self.account_of(query)
        payload = attributes.get(VALUE_DATA)
        if account is None or not isinstance(payload, bytes):
            return BAD_PARAMETER
        with self._lock:
            if account not in self._items:
                return ITEM_NOT_FOUND
            self._items[account] = payload
        return SUCCESS

    def fetch(self, query: dict) -> Tuple[int, Optional[dict]]:
        account = self.account_of(query)
        if account is None:
            return BAD_PARAMETER, None
        with self._lock:
            payload = self._items.get(account)
        if payload is None:
            return ITEM_NOT_FOUND, None
        return SUCCESS, self.fetch_result(query, account, payload)

    def delete(self, query: dict) -> int:
        account = self.account_of(query)
        if account is None:
            return BAD_PARAMETER
        with self._lock:
            if self._items.pop(account, None) is None:
                return ITEM_NOT_FOUND
        return SUCCESS

    def __len__(self):
        with self._lock:
            return len(self._items)


class SecureItemRow(Base):
    __tablename__ = "secure_item"
    account = Column(String, primary_key=True, nullable=False)
    data = Column(LargeBinary, nullable=False)


class SQLiteVaultBackend(VaultBackend):
    """Vault persisted to ``<root>/vaults/<vault_name>.db`` through SQLAlchemy."""

    __slots__ = {"vault_name", "db_path", "__engine__", "__session__", "__lock__"}

    def __init__(self, vault_name: str, to_create: bool = True):
        log = get_logger()
        os.makedirs(vaults_folder, exist_ok=True)
        self.vault_name = vault_name
        self.db_path = os.path.join(vaults_folder, f"{vault_name}.db")
        self.__engine__ = None
        self.__session__ = None
        self.__lock__ = threading.RLock()
        path_exists = os.path.exists(self.db_path)
        if path_exists or to_create:
            db_url = f"sqlite:///{self.db_path}"
            self.__engine__ = create_engine(db_url, echo=False, future=True)
            self.__session__ = sessionmaker(bind=self.__engine__, class_=Session, expire_on_commit=False)
            # create_all is a no-op on an existing vault that already has the table
            self.__create_table__()
            if not path_exists:
                log.info(f"Created vault '{vault_name}'!")
        else:
            log.error(f"No such vault: '{vault_name}'!")

    @property
    def available(self) -> bool:
        return self.__engine__ is not None

    def __create_table__(self):
        get_logger().debug("Creating table in the database.")
        with self.__engine__.begin() as conn:
            Base.metadata.create_all(conn)

    def add(self, query: dict) -> int:
        log = get_logger()
        if not self.available:
            return NOT_AVAILABLE
        account = self.account_of(query)
        payload = query.get(VALUE_DATA)
        if account is None or not isinstance(payload, bytes):
            return BAD_PARAMETER
        log.debug(f"Adding key: {account} to vault '{self.vault_name}'.")
        try:
            with self.__lock__, self.__session__() as session:
                with session.begin():
                    if session.get(SecureItemRow, account) is not None:
                        return DUPLICATE_ITEM
                    session.add(SecureItemRow(account=account, data=payload))
        except IntegrityError:
            return DUPLICATE_ITEM
        except SQLAlchemyError as e:
            log.error(f"Failed to add key '{account}' to vault '{self.vault_name}': {e}")
            return IO_ERROR
        return SUCCESS

    def update(self, query: dict, attributes: dict) -> int:
        log = get_logger()
        if not self.available:
            return NOT_AVAILABLE
        account = self.account_of(query)
        payload = attributes.get(VALUE_DATA)
        if account is None or not isinstance(payload, bytes):
            return BAD_PARAMETER
        log.debug(f"Updating key: {account} in vault '{self.vault_name}'.")
        try:
            with self.__lock__, self.__session__() as session:
                with session.begin():
                    existing_data = session.get(SecureItemRow, account)
                    if existing_data is None:
                        return ITEM_NOT_FOUND
                    existing_data.data = payload
        except SQLAlchemyError as e:
            log.error(f"Failed to update key '{account}' in vault '{self.vault_name}': {e}")
            return IO_ERROR
        return SUCCESS

    def fetch(self, query: dict) -> Tuple[int, Optional[dict]]:
        log = get_logger()
        if not self.available:
            return NOT_AVAILABLE, None
        account = self.account_of(query)
        if account is None:
            return BAD_PARAMETER, None
        log.debug(f"Retrieving key: {account} from vault '{self.vault_name}'.")
        try:
            with self.__session__() as session:
                result = session.execute(select(SecureItemRow).where(SecureItemRow.account == account))
                data = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            log.error(f"Failed to fetch key '{account}' from vault '{self.vault_name}': {e}")
            return IO_ERROR, None
        if data is None:
            return ITEM_NOT_FOUND, None
        return SUCCESS, self.fetch_result(query, account, data.data)

    def delete(self, query: dict) -> int:
        log = get_logger()
        if not self.available:
            return NOT_AVAILABLE
        account = self.account_of(query)
        if account is None:
            return BAD_PARAMETER
        log.debug(f"Deleting key: {account} from vault '{self.vault_name}'.")
        try:
            with self.__lock__, self.__session__() as session:
                with session.begin():
                    data = session.get(SecureItemRow, account)
                    if data is None:
                        return ITEM_NOT_FOUND
                    session.delete(data)
        except SQLAlchemyError as e:
            log.error(f"Failed to delete key '{account}' from vault '{self.vault_name}': {e}")
            return IO_ERROR
        return SUCCESS

    def delete_vault(self):
        log = get_logger()
        if self.__engine__ is not None:
            self.__engine__.dispose()
            self.__engine__ = None
            self.__session__ = None
        if os.path.exists(self.db_path):
            os.remove(self.db_path)
            log.info(f"Vault '{self.vault_name}' deleted successfully.")
        else:
            log.warning(f"Vault '{self.vault_name}' does not exist.")
