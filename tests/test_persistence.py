"""Unit tests for the append-only log (AOF)."""

import asyncio
import os
from pathlib import Path

import pytest

from redis_lite.cache.keyspace import Keyspace
from redis_lite.engine.engine import CommandEngine
from redis_lite.errors import PersistenceError, ReplayError
from redis_lite.persistence.aof import AppendOnlyLog
from redis_lite.protocol.codec import ProtocolCodec
from redis_lite.protocol.commands import command_to_value, parse_command
from redis_lite.protocol.values import BulkString, Null, SimpleString

codec = ProtocolCodec()


def encode_commands(*commands) -> bytes:
    return b"".join(codec.encode(command_to_value(*command)) for command in commands)


def replay_into_fresh_engine(path: Path) -> CommandEngine:
    engine = CommandEngine(Keyspace())
    AppendOnlyLog.open(path, engine).close()
    return engine


def test_open_creates_missing_file(tmp_path):
    """Opening a log creates the file and any missing directories."""
    path = tmp_path / "nested" / "dir" / "log.aof"
    aof = AppendOnlyLog.open(path, CommandEngine())

    assert path.exists()
    assert aof.is_open
    assert aof.records_replayed == 0
    aof.close()


def test_open_fails_when_path_is_directory(tmp_path):
    """A path that cannot be opened as a file is a PersistenceError."""
    with pytest.raises(PersistenceError):
        AppendOnlyLog.open(tmp_path, CommandEngine())


def test_append_writes_encoded_command(aof_path, engine):
    """Appended commands are stored verbatim in wire form."""
    aof = AppendOnlyLog.open(aof_path, engine)
    written = aof.append(command_to_value("SET", "k", "v"))
    aof.close()

    expected = b"*3\r\n$3\r\nSET\r\n$1\r\nk\r\n$1\r\nv\r\n"
    assert written == len(expected)
    assert aof_path.read_bytes() == expected


def test_append_accepts_command_objects(aof_path, engine):
    """append() takes a parsed Command as well as an Array."""
    command = parse_command(command_to_value("DEL", "a", "b"))
    with AppendOnlyLog.open(aof_path, engine) as aof:
        aof.append(command)
        assert aof.records_appended == 1

    assert aof_path.read_bytes() == encode_commands(("DEL", "a", "b"))


def test_flush_makes_records_visible(aof_path, engine):
    """After flush() the bytes are on disk even though the log is open."""
    aof = AppendOnlyLog.open(aof_path, engine)
    aof.append(command_to_value("SET", "k", "v"))
    aof.flush()

    assert aof_path.read_bytes() == encode_commands(("SET", "k", "v"))
    aof.close()


def test_append_after_close_raises(aof_path, engine):
    """Writing through a closed log is refused."""
    aof = AppendOnlyLog.open(aof_path, engine)
    aof.close()

    with pytest.raises(PersistenceError):
        aof.append(command_to_value("SET", "k", "v"))
    # flush and close are harmless once closed
    aof.flush()
    aof.close()


def test_replay_rebuilds_keyspace(aof_path):
    """Replaying SET/SET/DEL from empty state leaves no key."""
    aof_path.write_bytes(encode_commands(
        ("SET", "k", "v1"),
        ("SET", "k", "v2"),
        ("DEL", "k"),
    ))

    engine = replay_into_fresh_engine(aof_path)

    assert engine.keyspace.get("k") is None
    assert engine.keyspace.size() == 0


def test_replay_of_prefix(aof_path):
    """The same log cut after two records yields k = v2."""
    aof_path.write_bytes(encode_commands(
        ("SET", "k", "v1"),
        ("SET", "k", "v2"),
    ))

    engine = replay_into_fresh_engine(aof_path)

    assert engine.dispatch("GET", [BulkString(b"k")]) == BulkString(b"v2")


def test_replay_stops_at_truncated_record(aof_path):
    """A partial trailing record ends replay without an error."""
    full = encode_commands(("SET", "a", "1"), ("SET", "b", "2"))
    aof_path.write_bytes(full[:-5])

    engine = CommandEngine()
    aof = AppendOnlyLog.open(aof_path, engine)

    assert aof.records_replayed == 1
    assert engine.keyspace.get("a") == BulkString(b"1")
    assert engine.keyspace.get("b") is None
    aof.close()


def test_truncated_tail_is_dropped_before_appending(aof_path):
    """New records start on a record boundary after a truncated tail."""
    first = encode_commands(("SET", "a", "1"))
    aof_path.write_bytes(first + b"*3\r\n$3\r\nSET\r\n$1")

    aof = AppendOnlyLog.open(aof_path, CommandEngine())
    aof.append(command_to_value("SET", "c", "3"))
    aof.close()

    assert aof_path.read_bytes() == first + encode_commands(("SET", "c", "3"))
    engine = replay_into_fresh_engine(aof_path)
    assert sorted(engine.keyspace.keys()) == ["a", "c"]


def test_replay_corrupt_record_is_fatal(aof_path):
    """Malformed bytes in the middle of the log abort startup."""
    aof_path.write_bytes(
        encode_commands(("SET", "a", "1")) + b"?garbage\r\n" + encode_commands(("SET", "b", "2"))
    )

    with pytest.raises(ReplayError):
        AppendOnlyLog.open(aof_path, CommandEngine())


def test_replay_skips_unknown_commands(aof_path):
    """Unknown command names are skipped; later records still apply."""
    aof_path.write_bytes(encode_commands(
        ("SET", "a", "1"),
        ("FLUSHALL",),
        ("SET", "b", "2"),
    ))

    engine = CommandEngine()
    aof = AppendOnlyLog.open(aof_path, engine)

    assert aof.records_replayed == 2
    assert sorted(engine.keyspace.keys()) == ["a", "b"]
    aof.close()


def test_replay_skips_non_command_records(aof_path):
    """Records that are not Arrays of BulkStrings are skipped."""
    aof_path.write_bytes(codec.encode(SimpleString("OK")) + encode_commands(("SET", "a", "1")))

    engine = replay_into_fresh_engine(aof_path)

    assert engine.keyspace.get("a") == BulkString(b"1")


def test_replay_method_is_repeatable(aof_path, engine):
    """replay() can be re-run against a fresh engine."""
    aof = AppendOnlyLog.open(aof_path, engine)
    aof.append(command_to_value("SET", "k", "v"))
    aof.flush()

    fresh = CommandEngine()
    aof.engine = fresh
    assert aof.replay() == 1
    assert fresh.keyspace.get("k") == BulkString(b"v")
    aof.close()


def test_replay_large_log(aof_path):
    """Records spanning read-chunk boundaries replay correctly."""
    big = "x" * 100_000
    aof_path.write_bytes(encode_commands(*[("SET", f"k{i}", big) for i in range(5)]))

    engine = replay_into_fresh_engine(aof_path)

    assert engine.keyspace.size() == 5
    assert engine.keyspace.get("k4") == BulkString(big.encode())


def test_get_stats(aof_path, engine):
    aof = AppendOnlyLog.open(aof_path, engine)
    aof.append(command_to_value("SET", "k", "v"))
    aof.close()

    stats = aof.get_stats()
    assert stats["open"] is False
    assert stats["records_appended"] == 1
    assert stats["size_bytes"] == os.path.getsize(aof_path)


@pytest.mark.asyncio
async def test_flush_periodically_flushes_until_cancelled(aof_path, engine):
    """The background flusher persists appended records and stops on cancel."""
    aof = AppendOnlyLog.open(aof_path, engine, flush_interval=0.01)
    task = asyncio.create_task(aof.flush_periodically())

    aof.append(command_to_value("SET", "k", "v"))
    await asyncio.sleep(0.1)
    assert aof_path.read_bytes() == encode_commands(("SET", "k", "v"))

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    aof.close()


def test_engine_state_after_replay_matches_dispatch(aof_path):
    """GET after replay returns exactly what was SET before restart."""
    engine = CommandEngine()
    with AppendOnlyLog.open(aof_path, engine) as aof:
        for command in (("SET", "k", "v"), ("SET", "gone", "x"), ("DEL", "gone", "never")):
            engine.execute(command_to_value(*command))
            aof.append(command_to_value(*command))

    restored = replay_into_fresh_engine(aof_path)
    assert restored.dispatch("GET", [BulkString(b"k")]) == BulkString(b"v")
    assert restored.dispatch("GET", [BulkString(b"gone")]) == Null()


def test_replay_deeply_nested_record_is_fatal(aof_path):
    """Nesting beyond the codec limit is a ReplayError, not a crash."""
    aof_path.write_bytes(b"*1\r\n" * 5000 + b"_\r\n")

    with pytest.raises(ReplayError):
        AppendOnlyLog.open(aof_path, CommandEngine())


def test_damaged_length_before_later_records_is_fatal(aof_path):
    """A length running past EOF is only a torn tail if nothing follows it."""
    damaged = b"*3\r\n$3\r\nSET\r\n$1\r\nb\r\n$999\r\nxy\r\n"
    contents = (
        encode_commands(("SET", "a", "1"))
        + damaged
        + encode_commands(("SET", "c", "3"), ("SET", "d", "4"))
    )
    aof_path.write_bytes(contents)

    with pytest.raises(ReplayError, match="complete command"):
        AppendOnlyLog.open(aof_path, CommandEngine())
    assert aof_path.read_bytes() == contents


def test_close_reports_fsync_failure(aof_path, engine, monkeypatch):
    """An fsync failure on close is a PersistenceError and the log is closed."""
    aof = AppendOnlyLog.open(aof_path, engine)
    aof.append(command_to_value("SET", "k", "v"))

    def broken_fsync(fd):
        raise OSError("I/O error")

    monkeypatch.setattr(os, "fsync", broken_fsync)

    with pytest.raises(PersistenceError):
        aof.close()
    assert not aof.is_open
