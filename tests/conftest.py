"""
Shared fixtures: a SetupConfig rooted in a temp home and a fake runner
that records commands and reproduces their side effects on disk.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Callable

import pytest

import zsh_setup
from zsh_setup import Command, ExternalCommandFailure, SetupConfig


def make_executable(directory: Path, name: str) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    exe = directory / name
    exe.write_text("#!/bin/sh\nexit 0\n")
    exe.chmod(0o755)
    return exe


class FakeRunner:
    """Stands in for CommandRunner without touching the network."""

    def __init__(self, config: SetupConfig, bin_dir: Path) -> None:
        self.config = config
        self.bin_dir = bin_dir
        self.commands: list[Command] = []
        self.ruby_version = "3.2.2"
        self.fail_on: Callable[[Command], bool] = lambda command: False

    @property
    def argvs(self) -> list[list[str]]:
        return [c.argv for c in self.commands]

    def run(self, command: Command) -> str:
        self.commands.append(command)
        if self.fail_on(command):
            raise ExternalCommandFailure(command, "boom\n", 1)

        argv = command.argv
        if argv[0] == "curl":
            return "echo installer\n"
        if argv[:2] == ["git", "clone"]:
            Path(argv[-1]).mkdir(parents=True)
        elif argv[0] == "sh" and "--unattended" in argv:
            self.config.oh_my_zsh_dir.mkdir(parents=True)
        elif argv[:4] == ["brew", "install", "--cask", zsh_setup.NERD_FONT_CASK]:
            self.config.fonts_dir.mkdir(parents=True, exist_ok=True)
            (self.config.fonts_dir / zsh_setup.NERD_FONT_FILE).write_bytes(b"font")
        elif argv[:2] == ["brew", "install"]:
            make_executable(self.bin_dir, argv[2])
        elif argv[-3:] == ["gem", "install", "colorls"]:
            make_executable(self.bin_dir, "colorls")
        elif argv == ["ruby", "-v"]:
            return f"ruby {self.ruby_version}p100 (2023-03-30 revision e51014f9c0) [arm64-darwin22]\n"
        elif argv == ["rbenv", "root"]:
            return str(self.config.home / ".rbenv") + "\n"
        return ""


@pytest.fixture
def home(tmp_path: Path) -> Path:
    path = tmp_path / "home"
    path.mkdir()
    return path


@pytest.fixture
def bin_dir(tmp_path: Path) -> Path:
    path = tmp_path / "bin"
    for name in ("brew", "zsh", "sudo", "ruby"):
        make_executable(path, name)
    return path


@pytest.fixture
def config(home: Path, bin_dir: Path) -> SetupConfig:
    return SetupConfig.from_environment(
        {
            "HOME": str(home),
            "USER": "tester",
            "SHELL": "/bin/zsh",
            "PATH": str(bin_dir),
        }
    )


@pytest.fixture
def runner(config: SetupConfig, bin_dir: Path) -> FakeRunner:
    return FakeRunner(config, bin_dir)


@pytest.fixture
def zshrc(config: SetupConfig) -> Path:
    config.zshrc.write_text(
        'export ZSH="$HOME/.oh-my-zsh"\n'
        'ZSH_THEME="robbyrussell"\n'
        "plugins=(git docker)\n"
        "source $ZSH/oh-my-zsh.sh\n"
    )
    return config.zshrc


@pytest.fixture
def real_path_config(home: Path) -> SetupConfig:
    """Config whose search path is the real PATH, for running real commands."""
    return SetupConfig.from_environment(
        {"HOME": str(home), "USER": "tester", "SHELL": "/bin/zsh", "PATH": os.environ.get("PATH", os.defpath)}
    )
