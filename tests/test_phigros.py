import hashlib
import json
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from phigrank.models import GameSave, SongRecord
from phigrank.phigros import (
    AuthError,
    ChecksumMismatchError,
    InvalidSaveSizeError,
    PhigrosClient,
    PhigrosError,
    RecordNotFoundError,
    build_rks_result,
    calculate_checksum,
    find_song_record,
    verify_save_data,
)
from phigrank.song import SongNotFoundError

SAVE_BYTES = bytes(range(64))


def _make_handler(state):
    class Handler(BaseHTTPRequestHandler):
        def log_message(self, *args):
            pass

        def _send(self, status, body, content_type="application/json"):
            self.send_response(status)
            self.send_header("Content-Type", content_type)
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def do_GET(self):
            state["sessions"].append(self.headers.get("X-LC-Session"))
            state["app_ids"].append(self.headers.get("X-LC-Id"))
            port = self.server.server_address[1]
            if self.path == "/1.1/classes/_GameSave?limit=1":
                if state["summary_status"] != 200:
                    self._send(state["summary_status"], b"{}")
                    return
                summary = state.get("summary") or {
                    "results": [
                        {
                            "gameFile": {
                                "url": f"http://127.0.0.1:{port}/save.bin",
                                "metaData": {"_checksum": state["checksum"]},
                            }
                        }
                    ]
                }
                self._send(200, json.dumps(summary).encode())
            elif self.path == "/save.bin":
                self._send(200, state["save"], "application/octet-stream")
            elif self.path == "/1.1/users/me":
                if self.headers.get("X-LC-Session") != "token":
                    self._send(401, b'{"error": "unauthorized"}')
                else:
                    self._send(200, json.dumps({"objectId": "obj1", "nickname": "Nick"}).encode())
            else:
                self._send(404, b"{}")

    return Handler


@pytest.fixture
def service():
    state = {
        "sessions": [],
        "app_ids": [],
        "summary_status": 200,
        "save": SAVE_BYTES,
        "checksum": hashlib.md5(SAVE_BYTES).hexdigest(),
    }
    server = ThreadingHTTPServer(("127.0.0.1", 0), _make_handler(state))
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    client = PhigrosClient(
        "test-app", "placeholder", f"http://127.0.0.1:{server.server_address[1]}/1.1", 5.0
    )
    try:
        yield client, state
    finally:
        server.shutdown()
        server.server_close()


def test_checksum_of_empty_input():
    assert calculate_checksum(b"") == "d41d8cd98f00b204e9800998ecf8427e"


def test_verify_save_data_rejects_short_data():
    with pytest.raises(InvalidSaveSizeError) as info:
        verify_save_data(b"x" * 30, calculate_checksum(b"x" * 30))
    assert info.value.size == 30


def test_verify_save_data_rejects_mismatch():
    with pytest.raises(ChecksumMismatchError) as info:
        verify_save_data(SAVE_BYTES, "0" * 32)
    assert info.value.expected == "0" * 32
    assert info.value.actual == calculate_checksum(SAVE_BYTES)


def test_verify_save_data_accepts_matching_data():
    assert verify_save_data(SAVE_BYTES, calculate_checksum(SAVE_BYTES)) == SAVE_BYTES


def _save():
    return GameSave(
        game_record={
            "song.a": {
                "IN": SongRecord(score=990000.0, acc=99.0, fc=True, difficulty=14.0),
                "EZ": SongRecord(score=500000.0, acc=60.0, fc=False, difficulty=3.0),
            },
            "song.b": {
                "AT": SongRecord(score=1000000.0, acc=100.0, fc=True, difficulty=15.5),
                "HD": SongRecord(score=900000.0, acc=95.0, fc=False, difficulty=None),
            },
        }
    )


def test_build_rks_result_filters_and_sorts():
    result = build_rks_result(_save(), {"song.a": "Song A"})
    assert [(r.song_id, r.difficulty) for r in result.records] == [
        ("song.b", "AT"),
        ("song.a", "IN"),
    ]
    assert result.records[1].song_name == "Song A"
    assert result.records[0].song_name == "song.b"
    assert result.records[0].rks == pytest.approx(15.5)


def test_build_rks_result_without_records():
    with pytest.raises(RecordNotFoundError):
        build_rks_result(GameSave())


def test_find_song_record_all_and_one_difficulty():
    save = _save()
    assert set(find_song_record(save, "song.a")) == {"IN", "EZ"}
    only = find_song_record(save, "song.a", "IN")
    assert list(only) == ["IN"]
    assert only["IN"].acc == 99.0


def test_find_song_record_errors():
    with pytest.raises(SongNotFoundError):
        find_song_record(_save(), "missing")
    with pytest.raises(RecordNotFoundError):
        find_song_record(_save(), "song.a", "AT")
    with pytest.raises(RecordNotFoundError):
        find_song_record(GameSave(), "song.a")


def test_fetch_save_downloads_and_verifies(service):
    client, state = service
    assert client.fetch_save("token") == SAVE_BYTES
    assert state["sessions"][0] == "token"
    assert state["app_ids"][0] == "test-app"


def test_fetch_save_checksum_mismatch(service):
    client, state = service
    state["checksum"] = "f" * 32
    with pytest.raises(ChecksumMismatchError):
        client.fetch_save("token")


def test_fetch_save_too_small(service):
    client, state = service
    state["save"] = b"tiny"
    state["checksum"] = hashlib.md5(b"tiny").hexdigest()
    with pytest.raises(InvalidSaveSizeError):
        client.fetch_save("token")


def test_fetch_save_without_url(service):
    client, state = service
    state["summary"] = {"results": []}
    with pytest.raises(PhigrosError):
        client.fetch_save("token")


def test_fetch_summary_http_error(service):
    client, state = service
    state["summary_status"] = 500
    with pytest.raises(PhigrosError, match="500"):
        client.fetch_summary("token")


def test_get_profile(service):
    client, _ = service
    profile = client.get_profile("token")
    assert profile.object_id == "obj1"
    assert profile.nickname == "Nick"


def test_get_profile_rejected_token(service):
    client, _ = service
    with pytest.raises(AuthError):
        client.get_profile("placeholder")


def test_unreachable_server_raises():
    client = PhigrosClient("test-app", "placeholder", "http://127.0.0.1:1/1.1/", 2.0)
    with pytest.raises(PhigrosError):
        client.fetch_summary("token")