"""End-to-end tests for the job lifecycle with a faked Playwright driver."""

import asyncio
import json
import tarfile
from io import StringIO
from unittest.mock import AsyncMock, MagicMock

import pytest

from browser_script_runner import job_runner
from browser_script_runner.job_runner import JobRunner, main

from conftest import FakeResponse, make_page


@pytest.fixture
def fake_playwright(monkeypatch):
    """Patch async_playwright() so launching returns a context holding one fake page."""
    page = make_page()
    page.video = None

    context = MagicMock()
    context.pages = [page]
    context.close = AsyncMock()

    playwright = MagicMock()
    playwright.chromium.launch_persistent_context = AsyncMock(return_value=context)
    playwright.stop = AsyncMock()

    starter = MagicMock()
    starter.start = AsyncMock(return_value=playwright)
    factory = MagicMock(return_value=starter)
    monkeypatch.setattr(job_runner, "async_playwright", factory)

    return MagicMock(factory=factory, playwright=playwright, context=context, page=page)


def run_job(tmp_path, job):
    stdout = StringIO()
    runner = JobRunner(workdir=tmp_path, stdout=stdout)
    text = job if isinstance(job, str) else json.dumps(job)
    code = asyncio.run(runner.execute(text))
    lines = [json.loads(line) for line in stdout.getvalue().splitlines()]
    return code, lines


def test_success(tmp_path, fake_playwright, no_delay):
    fake_playwright.page.evaluate.return_value = "Example Domain"

    code, lines = run_job(tmp_path, {"xy": 1, "params": {"script": "evaluate document.title"}})

    assert code == 0
    assert lines == [
        {"xy": 1, "progress": 1.0},
        {
            "xy": 1,
            "code": 0,
            "description": "Success",
            "data": {"evaluations": [{"script": "document.title", "result": "Example Domain"}]},
            "files": ["downloads/*"],
        },
    ]
    fake_playwright.context.close.assert_awaited_once()
    fake_playwright.playwright.stop.assert_awaited_once()


def test_browser_session_configuration(tmp_path, fake_playwright, no_delay):
    run_job(tmp_path, {"params": {"script": "evaluate 1", "domTimeout": 500, "navTimeout": 8000}})

    args, kwargs = fake_playwright.playwright.chromium.launch_persistent_context.await_args
    assert args[0] == str(tmp_path / "profile")
    assert kwargs["headless"] is True
    assert kwargs["downloads_path"] == str(tmp_path / "downloads")
    fake_playwright.page.set_default_timeout.assert_called_once_with(500)
    fake_playwright.page.set_default_navigation_timeout.assert_called_once_with(8000)


def test_captures_are_collected_before_reporting(tmp_path, fake_playwright, no_delay):
    def trigger_traffic(script):
        on_response = fake_playwright.context.on.call_args.args[1]
        on_response(FakeResponse("https://example.com/api/users", body=[{"id": 1}]))
        on_response(FakeResponse("https://example.com/logo.png", content_type="image/png"))
        return "ok"

    fake_playwright.page.evaluate.side_effect = trigger_traffic
    script = {"steps": [
        {"type": "capture", "url": "api/users"},
        {"type": "evaluate", "script": "fetch('/api/users')"},
    ]}

    code, lines = run_job(tmp_path, {"xy": 1, "params": {"script": script}})

    assert code == 0
    fake_playwright.context.on.assert_called_once()
    assert fake_playwright.context.on.call_args.args[0] == "response"
    fake_playwright.context.remove_listener.assert_called_once_with("response", fake_playwright.context.on.call_args.args[1])
    data = lines[-1]["data"]
    assert data["captures"] == [{
        "url": "https://example.com/api/users",
        "status": 200,
        "headers": {"content-type": "application/json"},
        "response": [{"id": 1}],
    }]
    assert data["evaluations"] == [{"script": "fetch('/api/users')", "result": "ok"}]


def test_failure_reports_partial_output(tmp_path, fake_playwright, no_delay):
    script = json.dumps({"steps": [
        {"type": "evaluate", "script": "1 + 1"},
        {"type": "navigate", "url": "not-a-url"},
        {"type": "evaluate", "script": "never"},
    ]})
    fake_playwright.page.evaluate.return_value = 2

    code, lines = run_job(tmp_path, {"xy": 1, "params": {"script": script}})

    assert code == 1
    assert lines[0] == {"xy": 1, "progress": pytest.approx(1 / 3)}
    assert lines[-1]["code"] == 1
    assert lines[-1]["description"] == "Navigate: Invalid URL: not-a-url"
    assert lines[-1]["data"] == {"evaluations": [{"script": "1 + 1", "result": 2}]}
    fake_playwright.page.evaluate.assert_awaited_once_with("1 + 1")
    fake_playwright.context.close.assert_awaited_once()


def test_empty_script_never_launches_browser(tmp_path, fake_playwright):
    code, lines = run_job(tmp_path, {"xy": 1, "params": {"script": "# nothing to do"}})

    assert code == 1
    assert lines == [{
        "xy": 1,
        "code": 1,
        "description": "Cannot run script: No steps found.",
        "data": {},
        "files": ["downloads/*"],
    }]
    fake_playwright.factory.assert_not_called()


def test_invalid_job_json_exits_without_protocol_output(tmp_path, fake_playwright):
    code, lines = run_job(tmp_path, "{not json")
    assert code == 1
    assert lines == []
    fake_playwright.factory.assert_not_called()


def test_no_protocol_output_without_xy(tmp_path, fake_playwright, no_delay):
    code, lines = run_job(tmp_path, {"params": {"script": "evaluate 1"}})
    assert code == 0
    assert lines == []


def test_verbose_dumps_job_and_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("RUNNER_TEST_MARKER", "yes")
    job = {"xy": 1, "params": {"verbose": 2, "script": ""}}

    run_job(tmp_path, job)

    assert json.loads((tmp_path / "downloads" / "job.json").read_text()) == job
    env = json.loads((tmp_path / "downloads" / "env.json").read_text())
    assert env["RUNNER_TEST_MARKER"] == "yes"


def test_no_dumps_below_verbose_two(tmp_path):
    run_job(tmp_path, {"params": {"verbose": 1, "script": ""}})
    assert not (tmp_path / "downloads" / "job.json").exists()


@pytest.mark.parametrize("video,script,kept", [
    ("always", "evaluate 1", True),
    ("error", "evaluate 1", False),
    ("error", "navigate nowhere-special", False),
])
def test_video_retention(tmp_path, fake_playwright, no_delay, video, script, kept):
    video_file = tmp_path / "downloads" / "recording.webm"
    video_file.parent.mkdir(parents=True)
    video_file.write_bytes(b"webm")
    fake_playwright.page.video = MagicMock()
    fake_playwright.page.video.path = AsyncMock(return_value=str(video_file))

    run_job(tmp_path, {"params": {"video": video, "script": script}})

    assert video_file.exists() is kept


def test_inference_log_is_archived(tmp_path, fake_playwright, no_delay):
    log_dir = tmp_path / "inference_summary"
    log_dir.mkdir()
    (log_dir / "0001_act.json").write_text("{}")

    code, _ = run_job(tmp_path, {"params": {"ai_log_inference": True, "script": "evaluate 1"}})

    assert code == 0
    with tarfile.open(tmp_path / "downloads" / "inference_summary.tar.gz") as tar:
        assert "inference_summary/0001_act.json" in tar.getnames()


def test_main_reads_job_file(tmp_path, capsys, fake_playwright):
    job_file = tmp_path / "job.json"
    job_file.write_text(json.dumps({"xy": 1, "params": {}}))

    code = asyncio.run(main(["--job", str(job_file), "--workdir", str(tmp_path / "work")]))

    assert code == 1
    line = json.loads(capsys.readouterr().out.strip())
    assert line["description"] == "Cannot run script: No steps found."
    assert (tmp_path / "work" / "downloads").is_dir()
