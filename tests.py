import logging
import os
import shutil
import tempfile
import threading
import unittest

from sqlalchemy import text

from securestore import (
    Codec,
    DecodingError,
    DuplicateItemError,
    EncodingError,
    ItemNotFoundError,
    JSONCodec,
    MemoryVaultBackend,
    PickleCodec,
    SecureItem,
    SecureStoreClient,
    SQLiteVaultBackend,
    StoreFailure,
    StoreObserver,
    VaultBackend,
    describe_status,
    save_to_store,
    set_logger,
    set_root_path,
)
from securestore import status
from securestore.log import get_logger


def nested(depth):
    value = []
    for _ in range(depth):
        value = [value]
    return value


DEEP_JSON_PAYLOAD = b"[" * 100000 + b"]" * 100000


class BrokenCodec(Codec):
    """Codec that fails with errors outside the store's taxonomy."""

    def encode(self, value):
        raise KeyError("encoder exploded")

    def decode(self, data):
        raise KeyError("decoder exploded")


class ScriptedBackend(VaultBackend):
    """Answers every primitive with a fixed status and records the queries it saw."""

    def __init__(self, add=status.SUCCESS, update=status.SUCCESS, fetch=(status.SUCCESS, None),
                 delete=status.SUCCESS):
        self.statuses = {"add": add, "update": update, "fetch": fetch, "delete": delete}
        self.calls = []

    def add(self, query):
        self.calls.append(("add", query))
        return self.statuses["add"]

    def update(self, query, attributes):
        self.calls.append(("update", query, attributes))
        return self.statuses["update"]

    def fetch(self, query):
        self.calls.append(("fetch", query))
        return self.statuses["fetch"]

    def delete(self, query):
        self.calls.append(("delete", query))
        return self.statuses["delete"]

    def primitives(self):
        return [call[0] for call in self.calls]


class ClientContractTests:
    """Behaviour every backend has to give the client. Mixed into one TestCase per backend."""

    def make_backend(self):
        raise NotImplementedError

    def setUp(self):
        self.backend = self.make_backend()
        self.client = SecureStoreClient(self.backend, JSONCodec())

    def test_insert_and_value(self):
        """Test storing and retrieving a value."""
        self.client.insert({"user": "ada", "scopes": ["read", "write"]}, "credentials")
        self.assertEqual(self.client.value("credentials"), {"user": "ada", "scopes": ["read", "write"]})

    def test_save_twice_keeps_latest(self):
        self.client.save("first", "k")
        self.client.save("second", "k")
        self.assertEqual(self.client.value("k"), "second")

    def test_value_after_delete_is_none(self):
        self.client.insert(1, "counter")
        self.client.delete_value("counter")
        self.assertIsNone(self.client.value("counter"))

    def test_strict_insert_conflict_keeps_original(self):
        self.client.insert("v1", "k")
        with self.assertRaises(DuplicateItemError) as ctx:
            self.client.insert("v2", "k")
        self.assertEqual(ctx.exception.status, status.DUPLICATE_ITEM)
        self.assertEqual(self.client.value("k"), "v1")

    def test_insert_with_overwrite_replaces(self):
        self.client.insert("v1", "k")
        self.client.insert("v2", "k", overwrite=True)
        self.assertEqual(self.client.value("k"), "v2")

    def test_update_missing_key_raises_not_found(self):
        with self.assertRaises(ItemNotFoundError) as ctx:
            self.client.update_value("v", "never-inserted")
        self.assertEqual(ctx.exception.status, status.ITEM_NOT_FOUND)
        self.assertEqual(ctx.exception.key, "never-inserted")

    def test_update_existing_key(self):
        self.client.insert([1, 2], "k")
        self.client.update_value([3], "k")
        self.assertEqual(self.client.value("k"), [3])

    def test_delete_missing_key_raises_not_found(self):
        with self.assertRaises(ItemNotFoundError):
            self.client.delete_value("never-inserted")

    def test_value_of_missing_key_is_none(self):
        self.assertIsNone(self.client.value("nonexistent_key"))

    def test_non_string_keys_use_literal_form(self):
        self.client.insert("answer", 42)
        self.assertEqual(self.client.value("42"), "answer")
        self.assertEqual(self.client.value(42), "answer")

    def test_concurrent_disjoint_inserts(self):
        errors = []

        def worker(i):
            try:
                self.client.insert({"n": i}, f"key-{i}")
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(20)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        for i in range(20):
            self.assertEqual(self.client.value(f"key-{i}"), {"n": i})

    def test_session_token_scenario(self):
        self.client.save({"id": 42, "expires": 1700000000}, "session-token")
        self.assertEqual(self.client.value("session-token"), {"id": 42, "expires": 1700000000})

        self.client.save({"id": 42, "expires": 1800000000}, "session-token")
        self.assertEqual(self.client.value("session-token"), {"id": 42, "expires": 1800000000})

    def test_item_accessor(self):
        self.client["k"] = "v1"
        self.assertEqual(self.client["k"], "v1")
        self.client["k"] = "v2"
        self.assertEqual(self.client["k"], "v2")
        del self.client["k"]
        self.assertIsNone(self.client["k"])
        self.assertIsNone(self.client.value("k"))

    def test_item_accessor_swallows_errors(self):
        del self.client["never-inserted"]
        self.assertFalse(self.client.quiet_set("never-inserted", None))
        self.assertFalse(self.client.quiet_set("k", object()))
        self.assertIsNone(self.client["k"])

    def test_clients_share_backend(self):
        other = SecureStoreClient(self.backend, JSONCodec(sort_keys=True))
        self.client.insert({"b": 1, "a": 2}, "shared")
        self.assertEqual(other.value("shared"), {"a": 2, "b": 1})


class TestMemoryBackendClient(ClientContractTests, unittest.TestCase):

    def make_backend(self):
        return MemoryVaultBackend()

    def test_len_counts_records(self):
        self.client.insert("a", "k1")
        self.client.insert("b", "k2")
        self.client.delete_value("k1")
        self.assertEqual(len(self.backend), 1)

    def test_len_waits_for_writers(self):
        counts = []
        reader = threading.Thread(target=lambda: counts.append(len(self.backend)))
        with self.backend._lock:
            reader.start()
            reader.join(timeout=0.2)
            self.assertTrue(reader.is_alive())
            self.backend._items["k"] = b"v"
        reader.join()
        self.assertEqual(counts, [1])


class TestSQLiteBackendClient(ClientContractTests, unittest.TestCase):

    def setUp(self):
        self.root = tempfile.mkdtemp()
        set_root_path(self.root)
        super().setUp()

    def tearDown(self):
        """Clean up after tests."""
        self.backend.delete_vault()
        shutil.rmtree(self.root, ignore_errors=True)

    def make_backend(self):
        return SQLiteVaultBackend("test_vault")


class TestStatusResolution(unittest.TestCase):

    def make_client(self, **statuses):
        backend = ScriptedBackend(**statuses)
        return SecureStoreClient(backend, JSONCodec()), backend

    def test_insert_builds_add_query(self):
        client, backend = self.make_client()
        client.insert({"a": 1}, "k")
        self.assertEqual(backend.calls, [("add", {"class": "genp", "acct": "k", "v_Data": b'{"a": 1}'})])

    def test_value_builds_fetch_query(self):
        client, backend = self.make_client(fetch=(status.ITEM_NOT_FOUND, None))
        client.value("k")
        _, query = backend.calls[0]
        self.assertEqual(query, {
            "class": "genp",
            "acct": "k",
            "m_Limit": "m_LimitOne",
            "r_Attributes": True,
            "r_Data": True,
        })

    def test_update_and_delete_search_by_key_only(self):
        client, backend = self.make_client()
        client.update_value(5, "k")
        client.delete_value("k")
        self.assertEqual(backend.calls, [
            ("update", {"class": "genp", "acct": "k"}, {"v_Data": b"5"}),
            ("delete", {"class": "genp", "acct": "k"}),
        ])

    def test_insert_other_failure(self):
        client, _ = self.make_client(add=status.IO_ERROR)
        with self.assertRaises(StoreFailure) as ctx:
            client.insert("v", "k")
        self.assertNotIsInstance(ctx.exception, DuplicateItemError)
        self.assertEqual(ctx.exception.status, status.IO_ERROR)

    def test_strict_insert_duplicate_never_updates(self):
        client, backend = self.make_client(add=status.DUPLICATE_ITEM)
        with self.assertRaises(DuplicateItemError):
            client.insert("v", "k")
        self.assertEqual(backend.primitives(), ["add"])

    def test_save_falls_back_to_update_once(self):
        client, backend = self.make_client(add=status.DUPLICATE_ITEM)
        client.save("v", "k")
        self.assertEqual(backend.primitives(), ["add", "update"])

    def test_save_propagates_non_duplicate_failure(self):
        client, backend = self.make_client(add=-25308)
        with self.assertRaises(StoreFailure) as ctx:
            client.save("v", "k")
        self.assertEqual(ctx.exception.status, -25308)
        self.assertEqual(backend.primitives(), ["add"])

    def test_save_propagates_update_failure(self):
        client, backend = self.make_client(add=status.DUPLICATE_ITEM, update=status.ITEM_NOT_FOUND)
        with self.assertRaises(ItemNotFoundError):
            client.save("v", "k")
        self.assertEqual(backend.primitives(), ["add", "update"])

    def test_update_other_failure(self):
        client, _ = self.make_client(update=status.BAD_PARAMETER)
        with self.assertRaises(StoreFailure) as ctx:
            client.update_value("v", "k")
        self.assertEqual(ctx.exception.status, status.BAD_PARAMETER)

    def test_delete_other_failure(self):
        client, _ = self.make_client(delete=status.NOT_AVAILABLE)
        with self.assertRaises(StoreFailure) as ctx:
            client.delete_value("k")
        self.assertEqual(ctx.exception.status, status.NOT_AVAILABLE)

    def test_value_other_failure(self):
        client, _ = self.make_client(fetch=(status.IO_ERROR, None))
        with self.assertRaises(StoreFailure):
            client.value("k")

    def test_value_without_payload_is_none(self):
        for result in (None, {}, {"acct": "k"}, {"v_Data": "not bytes"}, ["v_Data"]):
            client, _ = self.make_client(fetch=(status.SUCCESS, result))
            self.assertIsNone(client.value("k"), result)

    def test_value_with_bad_payload_raises_decoding_error(self):
        client, _ = self.make_client(fetch=(status.SUCCESS, {"v_Data": b"\xff not json"}))
        with self.assertRaises(DecodingError):
            client.value("k")

    def test_quiet_value_swallows_decoding_error(self):
        client, _ = self.make_client(fetch=(status.SUCCESS, {"v_Data": b"{"}))
        self.assertIsNone(client.quiet_value("k"))
        self.assertIsNone(client["k"])

    def test_encoding_error_skips_backend(self):
        client, backend = self.make_client()
        with self.assertRaises(EncodingError):
            client.insert({1, 2}, "k")
        self.assertEqual(backend.calls, [])

    def test_item_accessor_write_upserts(self):
        client, backend = self.make_client(add=status.DUPLICATE_ITEM)
        client["k"] = "v"
        self.assertEqual(backend.primitives(), ["add", "update"])

    def test_quiet_set_reports_failure(self):
        client, _ = self.make_client(add=status.IO_ERROR)
        self.assertFalse(client.quiet_set("k", "v"))

    def test_deeply_nested_value_is_encoding_error(self):
        client, backend = self.make_client()
        with self.assertRaises(EncodingError):
            client.insert(nested(100000), "k")
        self.assertEqual(backend.calls, [])

    def test_quiet_paths_survive_deep_nesting(self):
        client, _ = self.make_client(fetch=(status.SUCCESS, {"v_Data": DEEP_JSON_PAYLOAD}))
        client["k"] = nested(100000)
        self.assertFalse(client.quiet_set("k", nested(100000)))
        self.assertIsNone(client.quiet_value("k"))
        self.assertIsNone(client["k"])

    def test_foreign_codec_errors_become_typed(self):
        backend = ScriptedBackend(fetch=(status.SUCCESS, {"v_Data": b"payload"}))
        client = SecureStoreClient(backend, BrokenCodec())
        with self.assertRaises(EncodingError):
            client.save("v", "k")
        with self.assertRaises(DecodingError):
            client.value("k")
        self.assertFalse(client.quiet_set("k", "v"))
        self.assertIsNone(client["k"])


class TestErrors(unittest.TestCase):

    def test_from_status_picks_subclass(self):
        self.assertIsInstance(StoreFailure.from_status(status.DUPLICATE_ITEM), DuplicateItemError)
        self.assertIsInstance(StoreFailure.from_status(status.ITEM_NOT_FOUND), ItemNotFoundError)
        self.assertIs(type(StoreFailure.from_status(-1)), StoreFailure)

    def test_message_carries_status_and_key(self):
        error = StoreFailure.from_status(status.ITEM_NOT_FOUND, "k")
        self.assertIn("-25300", str(error))
        self.assertIn("'k'", str(error))

    def test_describe_unknown_status(self):
        self.assertEqual(describe_status(-1), "Unknown vault status -1.")
        self.assertIn("already exists", describe_status(status.DUPLICATE_ITEM))


class TestLogging(unittest.TestCase):

    def setUp(self):
        self.default = get_logger()

    def tearDown(self):
        set_logger(self.default)

    def test_set_logger_redirects_client_logs(self):
        logger = logging.getLogger("securestore.test")
        set_logger(logger)
        client = SecureStoreClient(MemoryVaultBackend(), JSONCodec())
        with self.assertLogs(logger, level="WARNING") as captured:
            client.value("missing")
        self.assertIn("Key 'missing' not found in vault.", captured.output[0])

    def test_swallowed_failures_are_logged(self):
        client = SecureStoreClient(MemoryVaultBackend(), JSONCodec())
        with self.assertLogs(self.default, level="WARNING") as captured:
            del client["missing"]
        self.assertTrue(any("Ignoring failed write of key 'missing'" in line for line in captured.output))


class TestCodecs(unittest.TestCase):

    def test_json_sort_keys(self):
        self.assertEqual(JSONCodec(sort_keys=True).encode({"b": 1, "a": 2}), b'{"a": 2, "b": 1}')

    def test_json_rejects_unserializable(self):
        with self.assertRaises(EncodingError):
            JSONCodec().encode(object())

    def test_pickle_keeps_python_types(self):
        codec = PickleCodec()
        value = {"when": (2024, 1, 1), "tags": {"a", "b"}}
        self.assertEqual(codec.decode(codec.encode(value)), value)

    def test_pickle_rejects_garbage(self):
        with self.assertRaises(DecodingError):
            PickleCodec().decode(b"definitely not a pickle")

    def test_pickle_rejects_unpicklable(self):
        with self.assertRaises(EncodingError):
            PickleCodec().encode(lambda: None)

    def test_json_rejects_values_it_cannot_return_intact(self):
        codec = JSONCodec()
        for value in ((2, 3), {1: "a"}, {"a": [{"b": (1,)}]}, [{None: 1}]):
            with self.assertRaises(EncodingError, msg=repr(value)):
                codec.encode(value)

    def test_json_round_trips_what_it_accepts(self):
        codec = JSONCodec()
        value = {"id": 42, "tags": ["a", "b"], "nested": {"ok": True, "ratio": 0.5, "none": None}}
        self.assertEqual(codec.decode(codec.encode(value)), value)

    def test_deep_nesting_is_typed(self):
        with self.assertRaises(EncodingError):
            JSONCodec().encode(nested(100000))
        with self.assertRaises(DecodingError):
            JSONCodec().decode(DEEP_JSON_PAYLOAD)
        with self.assertRaises(EncodingError):
            PickleCodec().encode(nested(100000))

    def test_interfaces_are_abstract(self):
        class AddOnlyBackend(VaultBackend):
            def add(self, query):
                return status.SUCCESS

        for interface in (VaultBackend, Codec, AddOnlyBackend):
            with self.assertRaises(TypeError):
                interface()


class TestSQLiteVaultBackend(unittest.TestCase):

    def setUp(self):
        """Set up test environment."""
        self.root = tempfile.mkdtemp()
        set_root_path(self.root)
        self.vault_name = "test_vault"
        self.backend = SQLiteVaultBackend(self.vault_name)

    def tearDown(self):
        self.backend.delete_vault()
        shutil.rmtree(self.root, ignore_errors=True)

    def test_records_survive_reopen(self):
        SecureStoreClient(self.backend, PickleCodec()).insert(("tuple", 1), "k")
        reopened = SQLiteVaultBackend(self.vault_name, to_create=False)
        self.assertEqual(SecureStoreClient(reopened, PickleCodec()).value("k"), ("tuple", 1))
        reopened.delete_vault()

    def test_missing_vault_is_not_available(self):
        backend = SQLiteVaultBackend("missing", to_create=False)
        self.assertFalse(backend.available)
        client = SecureStoreClient(backend, JSONCodec())
        with self.assertRaises(StoreFailure) as ctx:
            client.value("k")
        self.assertEqual(ctx.exception.status, status.NOT_AVAILABLE)
        self.assertFalse(os.path.exists(backend.db_path))

    def test_delete_vault(self):
        """Test deleting the vault."""
        db_path = self.backend.db_path
        self.assertTrue(os.path.exists(db_path))
        self.backend.delete_vault()
        self.assertFalse(os.path.exists(db_path))
        self.assertEqual(self.backend.add(status.add_query("k", b"v")), status.NOT_AVAILABLE)

    def test_rejects_malformed_queries(self):
        self.assertEqual(self.backend.add({"acct": "k", "v_Data": b"v"}), status.BAD_PARAMETER)
        self.assertEqual(self.backend.add({"class": "genp", "acct": "k", "v_Data": "v"}), status.BAD_PARAMETER)
        self.assertEqual(self.backend.fetch({"class": "genp"}), (status.BAD_PARAMETER, None))
        self.assertEqual(self.backend.delete({"class": "genp", "acct": 7}), status.BAD_PARAMETER)

    def test_fetch_returns_requested_parts(self):
        self.backend.add(status.add_query("k", b"payload"))
        code, item = self.backend.fetch(status.search_query("k"))
        self.assertEqual((code, item), (status.SUCCESS, {}))
        code, item = self.backend.fetch(status.fetch_query("k"))
        self.assertEqual(item, {"class": "genp", "acct": "k", "v_Data": b"payload"})

    def test_database_errors_report_io_error(self):
        client = SecureStoreClient(self.backend, JSONCodec())
        client.insert("v", "k")
        with self.backend.__engine__.begin() as conn:
            conn.execute(text("DROP TABLE secure_item"))

        with self.assertLogs(get_logger(), level="ERROR"):
            with self.assertRaises(StoreFailure) as ctx:
                client.value("k")
        self.assertEqual(ctx.exception.status, status.IO_ERROR)
        self.assertEqual(self.backend.add(status.add_query("k2", b"v")), status.IO_ERROR)
        self.assertEqual(self.backend.update(status.search_query("k"), {"v_Data": b"v"}), status.IO_ERROR)
        self.assertEqual(self.backend.delete(status.search_query("k")), status.IO_ERROR)


class TestSecureItem(unittest.TestCase):

    def setUp(self):
        self.client = SecureStoreClient(MemoryVaultBackend(), JSONCodec())

    def test_loads_on_construction(self):
        self.client.insert({"id": 42}, "session-token")
        item = SecureItem("session-token", self.client)
        self.assertEqual(item.value, {"id": 42})

    def test_missing_key_starts_empty(self):
        self.assertIsNone(SecureItem("nothing", self.client).value)

    def test_failed_load_starts_empty(self):
        client = SecureStoreClient(ScriptedBackend(fetch=(status.IO_ERROR, None)), JSONCodec())
        item = SecureItem("k", client)
        self.assertIsNone(item.value)
        with self.assertRaises(StoreFailure):
            item.load()

    def test_assignment_writes_back(self):
        item = SecureItem("k", self.client)
        item.value = "v1"
        item.value = "v2"
        self.assertEqual(self.client.value("k"), "v2")
        item.value = None
        self.assertIsNone(self.client.value("k"))

    def test_failed_assignment_keeps_cache(self):
        item = SecureItem("k", self.client)
        item.value = {1, 2}
        self.assertEqual(item.value, {1, 2})
        self.assertIsNone(self.client.value("k"))

    def test_strict_store_raises(self):
        item = SecureItem("k", self.client)
        with self.assertRaises(ItemNotFoundError):
            item.store()

    def test_load_picks_up_outside_changes(self):
        item = SecureItem("k", self.client)
        self.client.save("changed", "k")
        self.assertEqual(item.load(), "changed")
        self.assertEqual(item.value, "changed")


class TestStreamAdapters(unittest.TestCase):

    def setUp(self):
        self.client = SecureStoreClient(MemoryVaultBackend(), JSONCodec())

    def test_save_to_store_passes_values_through(self):
        values = list(save_to_store(iter([1, 2, 3]), "latest", self.client))
        self.assertEqual(values, [1, 2, 3])
        self.assertEqual(self.client.value("latest"), 3)

    def test_save_to_store_is_lazy(self):
        stream = save_to_store([1, 2], "latest", self.client)
        self.assertIsNone(self.client.value("latest"))
        self.assertEqual(next(stream), 1)
        self.assertEqual(self.client.value("latest"), 1)

    def test_save_to_store_ignores_write_failures(self):
        values = list(save_to_store([{1}, 2, {3}], "latest", self.client))
        self.assertEqual(values, [{1}, 2, {3}])
        self.assertEqual(self.client.value("latest"), 2)

    def test_source_errors_pass_through(self):
        def source():
            yield "a"
            raise RuntimeError("boom")

        stream = save_to_store(source(), "latest", self.client)
        self.assertEqual(next(stream), "a")
        with self.assertRaises(RuntimeError):
            next(stream)
        self.assertEqual(self.client.value("latest"), "a")

    def test_observer_counts_writes(self):
        observer = StoreObserver("latest", self.client)
        for value in ("a", object(), "b"):
            self.assertIsNone(observer(value))
        observer.on_error(RuntimeError("upstream"))
        observer.on_completed()
        self.assertEqual((observer.written, observer.failed), (2, 1))
        self.assertEqual(self.client.value("latest"), "b")

    def test_deeply_nested_values_do_not_break_the_stream(self):
        deep = nested(100000)
        observer = StoreObserver("latest", self.client)
        observer(deep)
        self.assertEqual((observer.written, observer.failed), (0, 1))
        values = list(save_to_store(["a", deep, "b"], "latest", self.client))
        self.assertEqual(len(values), 3)
        self.assertIs(values[1], deep)
        self.assertEqual(self.client.value("latest"), "b")

    def test_item_assignment_survives_deep_nesting(self):
        item = SecureItem("k", self.client)
        item.value = nested(100000)
        self.assertIsNone(self.client.value("k"))


if __name__ == "__main__":
    unittest.main()
