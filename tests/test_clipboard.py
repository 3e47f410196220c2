import pytest

from fleet_console.clipboard import Clipboard


@pytest.mark.asyncio
async def test_copy_uses_primary_command():
    assert await Clipboard("cat").copy("curl https://x | bash")


@pytest.mark.asyncio
async def test_missing_primary_falls_back():
    clipboard = Clipboard("fleet-console-no-such-tool --in", fallback_command="cat")
    assert await clipboard.copy("curl https://x | bash")


@pytest.mark.asyncio
async def test_failing_primary_falls_back():
    assert await Clipboard("false", fallback_command="cat").copy("text")


@pytest.mark.asyncio
async def test_copy_reports_failure_without_raising():
    clipboard = Clipboard("fleet-console-no-such-tool", fallback_command="false")
    assert not await clipboard.copy("text")
    assert not await Clipboard("", fallback_command=None).copy("text")
