"""Tests for the automation session command interface."""

import asyncio
import time
from unittest.mock import AsyncMock

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from browser_parity.automation.session import Session, SessionState
from browser_parity.errors import SessionClosed, SessionLost, SetupError, StaleReference, WaitTimeout
from browser_parity.models.capture import Viewport

from conftest import make_request


@pytest.fixture
def session(fake_agent, fake_page, fast_timeouts) -> Session:
    return Session(fake_agent, fake_page, fast_timeouts)


@pytest.mark.asyncio
class TestNavigation:

    async def test_open_relative_path_uses_agent_app_url(self, session, fake_page):
        url = await session.open("/settings")

        assert url == "http://127.0.0.1:15300/settings"
        args, kwargs = fake_page.goto.call_args
        assert args[0] == "http://127.0.0.1:15300/settings"
        assert kwargs["wait_until"] == "load"

    async def test_open_absolute_url_passes_through(self, session, fake_page):
        await session.open("https://example.com/")
        assert fake_page.goto.call_args[0][0] == "https://example.com/"

    async def test_open_uses_navigation_timeout_by_default(self, session, fake_page, fast_timeouts):
        await session.open("/")
        assert fake_page.goto.call_args[1]["timeout"] == fast_timeouts.navigation_ms

    async def test_get_url(self, session):
        await session.open("/a")
        assert await session.get_url() == "http://127.0.0.1:15300/a"

    async def test_navigation_timeout_maps_to_wait_timeout(self, session, fake_page):
        fake_page.goto.side_effect = PlaywrightTimeoutError("Timeout 1000ms exceeded.")

        with pytest.raises(WaitTimeout):
            await session.open("/slow")
        assert session.state == SessionState.READY

    async def test_other_playwright_errors_propagate(self, session, fake_page):
        fake_page.goto.side_effect = PlaywrightError("net::ERR_CONNECTION_REFUSED")

        with pytest.raises(PlaywrightError):
            await session.open("/")
        assert session.state == SessionState.READY


@pytest.mark.asyncio
class TestReferences:

    async def test_snapshot_issues_refs(self, session, fake_page):
        fake_page.set_dom([("button", "Submit"), ("link", "Home")])

        snap = await session.snapshot()

        assert [n.ref for n in snap.nodes] == ["@e1", "@e2"]
        assert snap.find("Submit").role == "button"
        assert '- button "Submit" [ref=@e1]' in snap.to_text()

    async def test_click_resolves_ref(self, session, fake_page):
        submit, _ = fake_page.set_dom([("button", "Submit"), ("link", "Home")])
        await session.snapshot()

        await session.click("@e1")

        submit.click.assert_awaited_once()

    async def test_fill_and_get_text(self, session, fake_page):
        field, = fake_page.set_dom([("textbox", "Email")])
        await session.snapshot()

        await session.fill("@e1", "a@b.c")
        text = await session.get_text("@e1")

        field.fill.assert_awaited_once_with("a@b.c", timeout=1000)
        assert text == "Email"

    async def test_select_returns_selected_values(self, session, fake_page):
        combo, = fake_page.set_dom([("combobox", "Country")])
        combo.select_option.return_value = ["nl"]
        await session.snapshot()

        assert await session.select("@e1", "nl") == ["nl"]

    async def test_ref_is_stale_after_navigation(self, session, fake_page):
        button, = fake_page.set_dom([("button", "Go")])
        await session.snapshot()
        await session.open("/next")

        with pytest.raises(StaleReference) as exc:
            await session.click("@e1")

        assert "navigation" in str(exc.value)
        button.click.assert_not_awaited()

    async def test_ref_is_stale_after_new_snapshot(self, session, fake_page):
        fake_page.set_dom([("button", "A")])
        await session.snapshot()
        fake_page.set_dom([("button", "B")])
        snap = await session.snapshot()

        assert snap.nodes[0].ref == "@e2"
        with pytest.raises(StaleReference):
            await session.click("@e1")

    async def test_ref_is_stale_after_dom_mutation(self, session, fake_page):
        button, = fake_page.set_dom([("button", "Go")])
        await session.snapshot()
        fake_page.mutation_seq += 1

        with pytest.raises(StaleReference):
            await session.click("@e1")
        button.click.assert_not_awaited()

    async def test_client_side_navigation_invalidates_refs(self, session, fake_page):
        fake_page.set_dom([("button", "Go")])
        await session.snapshot()
        fake_page.emit("framenavigated", fake_page.main_frame)

        with pytest.raises(StaleReference):
            await session.get_text("@e1")

    async def test_unknown_ref(self, session):
        with pytest.raises(StaleReference):
            await session.click("@e99")

    async def test_malformed_ref(self, session):
        with pytest.raises(StaleReference):
            await session.click("#submit")

    async def test_stale_reference_leaves_session_usable(self, session, fake_page):
        with pytest.raises(StaleReference):
            await session.click("@e5")
        assert session.state == SessionState.READY
        assert await session.get_url() == "about:blank"


@pytest.mark.asyncio
class TestWaitAndCapture:

    async def test_wait_network_idle(self, session):
        await session.wait_load("networkIdle")

    async def test_network_idle_after_open_waits_full_quiet_window(self, session, fast_timeouts):
        await asyncio.sleep(0.1)
        await session.open("/")

        start = time.monotonic()
        await session.wait_load("networkIdle")

        assert time.monotonic() - start >= fast_timeouts.network_idle_quiet_ms / 1000

    async def test_wait_dom_ready(self, session, fake_page):
        await session.wait_load("domReady")
        assert fake_page.wait_for_load_state.call_args[0][0] == "domcontentloaded"

    async def test_wait_unknown_mode(self, session):
        with pytest.raises(SetupError):
            await session.wait_load("forever")

    async def test_wait_network_idle_times_out(self, session, fake_page):
        fake_page.emit("request", make_request("http://127.0.0.1:15300/api/never"))

        with pytest.raises(WaitTimeout) as exc:
            await session.wait_load("networkIdle", quiet_ms=10, timeout_ms=100)
        assert "/api/never" in str(exc.value)

    async def test_screenshot_with_outstanding_requests_is_incomplete(self, session, fake_page):
        fake_page.emit("request", make_request("http://127.0.0.1:15300/api/slow"))

        capture = await session.screenshot()

        assert capture.incomplete is True
        assert capture.outstanding_requests == ["http://127.0.0.1:15300/api/slow"]
        assert capture.image.startswith(b"\x89PNG")

    async def test_screenshot_applies_viewport_once(self, session, fake_page):
        vp = Viewport(width=375, height=812, name="mobile")

        first = await session.screenshot(vp)
        await session.screenshot(vp)

        fake_page.set_viewport_size.assert_awaited_once_with({"width": 375, "height": 812})
        assert first.viewport == vp
        assert first.incomplete is False

    async def test_screenshot_requests_png_without_animations(self, session, fake_page):
        await session.screenshot()
        kwargs = fake_page.screenshot.call_args[1]
        assert kwargs["type"] == "png"
        assert kwargs["animations"] == "disabled"

    async def test_set_theme(self, session, fake_page):
        await session.set_theme("dark")
        fake_page.emulate_media.assert_awaited_once_with(color_scheme="dark")

    async def test_set_theme_rejects_unknown(self, session, fake_page):
        with pytest.raises(SetupError):
            await session.set_theme("sepia")
        fake_page.emulate_media.assert_not_awaited()


@pytest.mark.asyncio
class TestLifecycle:

    async def test_commands_after_close_raise_session_closed(self, session, fake_agent, fake_page):
        await session.close()

        with pytest.raises(SessionClosed):
            await session.get_url()
        fake_page.close.assert_awaited_once()
        assert fake_agent.forgotten == [session]

    async def test_close_is_idempotent(self, session, fake_page):
        await session.close()
        await session.close()
        fake_page.close.assert_awaited_once()

    async def test_lost_agent_fails_in_flight_command(self, session, fake_agent, fake_page):
        started = asyncio.Event()

        async def hang(url, **kwargs):
            started.set()
            await asyncio.sleep(30)

        fake_page.goto = AsyncMock(side_effect=hang)
        task = asyncio.create_task(session.open("/"))
        await started.wait()
        fake_agent.mark_lost("agent agent-test was stopped")

        with pytest.raises(SessionLost, match="stopped"):
            await asyncio.wait_for(task, timeout=1)
        assert session.state == SessionState.LOST
        assert fake_agent.in_flight == 0

    async def test_commands_after_loss_raise_session_lost(self, session, fake_agent):
        fake_agent.mark_lost("browser process exited unexpectedly with code 1")

        with pytest.raises(SessionLost):
            await session.get_url()

    async def test_close_after_loss_skips_page_close(self, session, fake_agent, fake_page):
        fake_agent.mark_lost("gone")
        await session.close()
        fake_page.close.assert_not_awaited()
        assert session.state == SessionState.CLOSED

    async def test_commands_never_interleave(self, session, fake_agent, fake_page):
        active = 0
        peak = 0

        async def slow_goto(url, **kwargs):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1

        fake_page.goto = AsyncMock(side_effect=slow_goto)
        await asyncio.gather(*(session.open(f"/p{i}") for i in range(5)))

        assert peak == 1
        assert fake_agent.commands_started == 5
        assert fake_agent.in_flight == 0
