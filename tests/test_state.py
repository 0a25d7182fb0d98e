import textwrap

import pytest
import yaml

from fastlysync.core.https_logging import ConfigValidationError, HTTPSLoggingEndpoint
from fastlysync.core.state import StateStore, load_desired


def test_missing_state_file_is_empty(tmp_path):
    store = StateStore(tmp_path / "state.yml")
    assert store.load("SVC") == []
    assert store.version("SVC") is None


def test_save_then_load(tmp_path):
    store = StateStore(tmp_path / "nested" / "state.yml")
    entries = [{"name": "a", "url": "https://a.example.com", "format_version": 2}]
    store.save("SVC", 3, entries)

    assert store.load("SVC") == entries
    assert store.version("SVC") == 3
    # no temp files left behind
    assert [p.name for p in (tmp_path / "nested").iterdir()] == ["state.yml"]


def test_save_keeps_other_services(tmp_path):
    store = StateStore(tmp_path / "state.yml")
    store.save("ONE", 1, [{"name": "a", "url": "https://a.example.com"}])
    store.save("TWO", 5, [])

    raw = yaml.safe_load((tmp_path / "state.yml").read_text(encoding="utf-8"))
    assert set(raw["services"]) == {"ONE", "TWO"}
    assert store.load("ONE")[0]["name"] == "a"


def test_load_desired(tmp_path):
    p = tmp_path / "logging.yml"
    p.write_text(textwrap.dedent("""
        service_id: SU1Z0isxPaozGVKXdv0eY
        version: 3
        httpslogging:
          - name: splunk
            url: https://splunk.example.com/collector
            json_format: 1
          - name: archive
            url: https://archive.example.com/in
            method: PUT
    """), encoding="utf-8")

    desired = load_desired(p)
    assert desired.ref.service_id == "SU1Z0isxPaozGVKXdv0eY"
    assert desired.ref.version == 3
    assert desired.endpoints.names() == ["archive", "splunk"]
    assert HTTPSLoggingEndpoint(
        "splunk", "https://splunk.example.com/collector", json_format="1"
    ) in desired.endpoints


def test_load_desired_without_endpoints(tmp_path):
    p = tmp_path / "logging.yml"
    p.write_text("service_id: SVC\nversion: 2\n", encoding="utf-8")
    assert len(load_desired(p).endpoints) == 0


@pytest.mark.parametrize(
    "content",
    [
        "version: 2\n",
        "service_id: SVC\n",
        "service_id: SVC\nversion: two\n",
        "service_id: SVC\nversion: 2\nhttpslogging: {name: a}\n",
        "- just\n- a list\n",
        "service_id: SVC\nversion: 2\nhttpslogging:\n  - {name: a, url: 'http://insecure.example.com'}\n",
    ],
)
def test_load_desired_rejects_bad_files(tmp_path, content):
    p = tmp_path / "logging.yml"
    p.write_text(content, encoding="utf-8")
    with pytest.raises(ConfigValidationError):
        load_desired(p)


def test_load_desired_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_desired(tmp_path / "nope.yml")


def test_malformed_yaml_is_a_validation_error(tmp_path):
    p = tmp_path / "logging.yml"
    p.write_text("httpslogging: [\n  - name: a", encoding="utf-8")
    with pytest.raises(ConfigValidationError) as ei:
        load_desired(p)
    assert "Invalid YAML" in str(ei.value)

    state = tmp_path / "state.yml"
    state.write_text("services: {SVC: [", encoding="utf-8")
    with pytest.raises(ConfigValidationError):
        StateStore(state).load("SVC")
