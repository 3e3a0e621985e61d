from __future__ import annotations

import sys
from pathlib import Path

import pytest

from einkframe.display.it8951 import IT8951Driver, parse_panel_info
from einkframe.exceptions import DisplayInitError, DisplayRenderError

_INFO = """\
Panel(width)=1872
width = 1872, height = 1404
Img Buffer Address = 0x119f00
FW Version = SWv_0.1.1
LUT Version = M641
VCOM = -1.53v
"""


def test_parse_panel_info() -> None:
    assert parse_panel_info(_INFO) == (1872, 1404, -1530)


def test_parse_panel_info_missing_fields() -> None:
    assert parse_panel_info("no panel") == (None, None, None)


def _script(tmp_path: Path, body: str) -> str:
    script = tmp_path / "it8951"
    script.write_text(f"#!{sys.executable}\n{body}")
    script.chmod(0o755)
    return str(script)


@pytest.mark.asyncio
async def test_init_reads_panel_geometry(tmp_path: Path) -> None:
    command = _script(tmp_path, f"print({_INFO!r})\n")
    driver = IT8951Driver(command=command, vcom=-2000, scratch_dir=tmp_path)

    await driver.init()

    assert driver.initialized
    assert (driver.width, driver.height, driver.vcom) == (1872, 1404, -1530)


@pytest.mark.asyncio
async def test_init_failure_raises(tmp_path: Path) -> None:
    command = _script(tmp_path, "import sys\nsys.stderr.write('no device')\nsys.exit(3)\n")
    driver = IT8951Driver(command=command, scratch_dir=tmp_path)

    with pytest.raises(DisplayInitError, match="code 3"):
        await driver.init()


@pytest.mark.asyncio
async def test_missing_command_raises_init_error(tmp_path: Path) -> None:
    driver = IT8951Driver(command=str(tmp_path / "missing"), scratch_dir=tmp_path)

    with pytest.raises(DisplayInitError):
        await driver.init()


@pytest.mark.asyncio
async def test_render_passes_image_and_vcom(tmp_path: Path) -> None:
    log = tmp_path / "calls.txt"
    body = (
        "import sys, pathlib\n"
        f"log = pathlib.Path({str(log)!r})\n"
        "if sys.argv[1] == 'display':\n"
        "    log.write_text(' '.join(sys.argv[2:]) + '|' + str(pathlib.Path(sys.argv[2]).read_bytes()))\n"
    )
    driver = IT8951Driver(command=_script(tmp_path, body), vcom=-1800, scratch_dir=tmp_path)
    await driver.init()

    await driver.render(b"\x01\x02")

    args, data = log.read_text().split("|")
    image_path, flag, vcom = args.split(" ")
    assert (flag, vcom) == ("-v", "-1800")
    assert data == repr(b"\x01\x02")
    assert not Path(image_path).exists()


@pytest.mark.asyncio
async def test_render_before_init_raises(tmp_path: Path) -> None:
    driver = IT8951Driver(command="it8951", scratch_dir=tmp_path)

    with pytest.raises(DisplayRenderError):
        await driver.render(b"\x01")


@pytest.mark.asyncio
async def test_clear_invokes_cli(tmp_path: Path) -> None:
    log = tmp_path / "calls.txt"
    body = (
        "import sys, pathlib\n"
        f"log = pathlib.Path({str(log)!r})\n"
        "if sys.argv[1] == 'clear':\n"
        "    log.write_text('cleared')\n"
    )
    driver = IT8951Driver(command=_script(tmp_path, body), scratch_dir=tmp_path)

    await driver.clear()
    assert not log.exists()

    await driver.init()
    await driver.clear()
    assert log.read_text() == "cleared"


@pytest.mark.asyncio
async def test_clear_failure_raises(tmp_path: Path) -> None:
    body = "import sys\nif sys.argv[1] == 'clear':\n    sys.exit(4)\n"
    driver = IT8951Driver(command=_script(tmp_path, body), scratch_dir=tmp_path)
    await driver.init()

    with pytest.raises(DisplayRenderError, match="code 4"):
        await driver.clear()
