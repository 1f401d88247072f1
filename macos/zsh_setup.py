#!/usr/bin/env python3
"""
macOS Zsh Environment Setup
--------------------------------------------------

Bootstraps a complete zsh development shell on macOS. Each component is
checked first and installed only when missing, so the script is safe to
re-run after a failure:

- Homebrew, zsh and zsh as the login shell
- oh-my-zsh with the powerlevel10k theme
- Hack Nerd Font and the matching iTerm2 font preferences
- zsh-syntax-highlighting and zsh-autosuggestions plugins
- colorls (with an rbenv-managed Ruby when the system Ruby is too old)

The user's ~/.zshrc is copied to ~/AMZC-backups before it is modified.

Usage:
  python3 zsh_setup.py

  Environment overrides: ZSH_CUSTOM, HOME, USER, SHELL

Version: 1.0.0
"""

import atexit
import getpass
import logging
import os
import platform
import pwd
import re
import shlex
import shutil
import signal
import subprocess
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import pyfiglet
from prompt_toolkit import prompt as pt_prompt
from prompt_toolkit.styles import Style as PtStyle
from rich.align import Align
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.style import Style
from rich.table import Table
from rich.text import Text
from rich.theme import Theme
from rich.traceback import install as install_rich_traceback

install_rich_traceback(show_locals=True)


# ----------------------------------------------------------------
# Configuration & Constants
# ----------------------------------------------------------------
VERSION = "1.0.0"
APP_NAME = "Zsh Setup"
APP_SUBTITLE = "macOS Shell Environment Installer"

HOMEBREW_INSTALL_URL = "https://raw.githubusercontent.com/Homebrew/install/HEAD/install.sh"
OH_MY_ZSH_INSTALL_URL = (
    "https://raw.githubusercontent.com/ohmyzsh/ohmyzsh/master/tools/install.sh"
)
POWERLEVEL10K_REPO = "https://github.com/romkatv/powerlevel10k.git"
PLUGIN_REPOS: Dict[str, str] = {
    "zsh-syntax-highlighting": "https://github.com/zsh-users/zsh-syntax-highlighting.git",
    "zsh-autosuggestions": "https://github.com/zsh-users/zsh-autosuggestions",
}
# Homebrew prefixes for Apple Silicon and Intel machines
HOMEBREW_BIN_DIRS = ["/opt/homebrew/bin", "/usr/local/bin"]

NERD_FONT_CASK = "font-hack-nerd-font"
NERD_FONT_FILE = "HackNerdFont-Regular.ttf"
ITERM2_DOMAIN = "com.googlecode.iterm2"
ITERM2_PREFERENCES: List[Tuple[str, str, str]] = [
    ("Non Ascii Font", "-string", "HackNF-Regular 12"),
    ("Normal Font", "-string", "MesloLGS-NF-Regular 13"),
    ("Use Non-ASCII Font", "-bool", "true"),
]

THEME_VALUE = "powerlevel10k/powerlevel10k"
THEME_LINE = f'ZSH_THEME="{THEME_VALUE}"'
# Replaces the whole plugin list. Plugins added by hand are dropped.
MANAGED_PLUGINS = ["git", "zsh-syntax-highlighting", "zsh-autosuggestions"]
PLUGINS_LINE = f"plugins=({' '.join(MANAGED_PLUGINS)})"

ALIAS_LINE = "alias ls=colorls"
ALIAS_VARIANTS = ("alias ls=colorls", "alias ls='colorls'")
RBENV_INIT_LINE = 'if which rbenv > /dev/null; then eval "$(rbenv init -)"; fi'
MIN_RUBY_VERSION = "3.1.0"

BACKUP_DIR_NAME = "AMZC-backups"
BACKUP_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"


@dataclass
class SetupConfig:
    """
    Run-wide settings resolved once from the environment.

    Every component receives this object instead of reading os.environ.
    """

    user: str
    home: Path
    shell: str
    zsh_custom: Path
    path: str
    min_ruby_version: str = MIN_RUBY_VERSION

    @classmethod
    def from_environment(
        cls, environ: Optional[Mapping[str, str]] = None
    ) -> "SetupConfig":
        environ = os.environ if environ is None else environ
        user = environ.get("USER") or getpass.getuser()
        home_value = environ.get("HOME")
        if home_value:
            home = Path(home_value)
        else:
            try:
                home = Path(pwd.getpwnam(user).pw_dir)
            except KeyError:
                home = Path(os.path.expanduser(f"~{user}"))
        custom = environ.get("ZSH_CUSTOM")
        zsh_custom = Path(custom) if custom else home / ".oh-my-zsh" / "custom"
        return cls(
            user=user,
            home=home,
            shell=environ.get("SHELL", ""),
            zsh_custom=zsh_custom,
            path=environ.get("PATH", os.defpath),
        )

    @property
    def zshrc(self) -> Path:
        return self.home / ".zshrc"

    @property
    def backup_dir(self) -> Path:
        return self.home / BACKUP_DIR_NAME

    @property
    def oh_my_zsh_dir(self) -> Path:
        return self.home / ".oh-my-zsh"

    @property
    def themes_dir(self) -> Path:
        return self.zsh_custom / "themes"

    @property
    def plugins_dir(self) -> Path:
        return self.zsh_custom / "plugins"

    @property
    def fonts_dir(self) -> Path:
        return self.home / "Library" / "Fonts"

    @property
    def log_file(self) -> Path:
        return self.home / "Library" / "Logs" / "zsh_setup.log"

    def prepend_path(self, directory: str) -> None:
        """Put a directory in front of the search path used for commands."""
        entries = [p for p in self.path.split(os.pathsep) if p and p != directory]
        self.path = os.pathsep.join([directory] + entries)


# ----------------------------------------------------------------
# Nord-Themed Colors and Rich Console
# ----------------------------------------------------------------
class NordColors:
    """Nord color palette for consistent theming throughout the application."""

    POLAR_NIGHT_1: str = "#2E3440"
    POLAR_NIGHT_4: str = "#4C566A"
    SNOW_STORM_1: str = "#D8DEE9"
    SNOW_STORM_2: str = "#E5E9F0"
    FROST_1: str = "#8FBCBB"
    FROST_2: str = "#88C0D0"
    FROST_3: str = "#81A1C1"
    FROST_4: str = "#5E81AC"
    RED: str = "#BF616A"
    YELLOW: str = "#EBCB8B"
    GREEN: str = "#A3BE8C"
    PURPLE: str = "#B48EAD"


console: Console = Console(
    theme=Theme(
        {
            "info": f"bold {NordColors.FROST_2}",
            "warning": f"bold {NordColors.YELLOW}",
            "error": f"bold {NordColors.RED}",
            "success": f"bold {NordColors.GREEN}",
            "path": f"italic {NordColors.FROST_1}",
        }
    ),
    highlight=False,
)
error_console: Console = Console(stderr=True, highlight=False)

logger = logging.getLogger("zsh_setup")


# ----------------------------------------------------------------
# Custom Exceptions
# ----------------------------------------------------------------
class SetupError(Exception):
    """Base exception for setup errors."""

    pass


class ExternalCommandFailure(SetupError):
    """Raised when an external command exits non-zero or cannot be started."""

    def __init__(self, command: "Command", output: str, returncode: int) -> None:
        self.command = command
        self.output = output
        self.returncode = returncode
        super().__init__(f"Command failed: {command} : Msg: {output.strip()}")


# ----------------------------------------------------------------
# Logging and Banner Helpers
# ----------------------------------------------------------------
def setup_logging(config: SetupConfig) -> logging.Logger:
    """Configure logging with Rich handler and file output."""
    config.log_file.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(config.log_file)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s | %(levelname)s | %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
        )
    )
    rich_handler = RichHandler(rich_tracebacks=True, markup=False, console=console)
    rich_handler.setLevel(logging.WARNING)

    logging.basicConfig(level=logging.DEBUG, handlers=[rich_handler, file_handler])
    logger.debug("Logging initialized: %s", config.log_file)
    return logger


def create_header() -> Panel:
    """
    Create an ASCII art header using Pyfiglet with a Nord-themed gradient.

    Returns:
        Panel containing the styled header
    """
    ascii_art = ""
    for font_name in ["slant", "small", "standard"]:
        try:
            ascii_art = pyfiglet.Figlet(font=font_name, width=60).renderText(APP_NAME)
        except pyfiglet.FontNotFound:
            continue
        if ascii_art.strip():
            break

    if not ascii_art.strip():
        ascii_art = f"=== {APP_NAME} ===\n"

    colors = [
        NordColors.FROST_1,
        NordColors.FROST_2,
        NordColors.FROST_3,
        NordColors.FROST_4,
    ]
    lines = [line for line in ascii_art.splitlines() if line.strip()]
    styled_text = ""
    for i, line in enumerate(lines):
        styled_text += f"[bold {colors[i % len(colors)]}]{line}[/]\n"

    tech_border = f"[{NordColors.FROST_3}]" + "━" * 50 + "[/]"
    styled_text = tech_border + "\n" + styled_text + tech_border

    return Panel(
        Text.from_markup(styled_text),
        border_style=Style(color=NordColors.FROST_1),
        padding=(1, 2),
        title=f"[bold {NordColors.SNOW_STORM_2}]v{VERSION}[/]",
        title_align="right",
        subtitle=f"[bold {NordColors.SNOW_STORM_1}]{APP_SUBTITLE}[/]",
        subtitle_align="center",
    )


def print_message(
    text: str, style: str = NordColors.FROST_2, prefix: str = "•"
) -> None:
    console.print(Text(f"{prefix} {text}", style=style))


def print_step(message: str) -> None:
    """Print a step description."""
    print_message(message, NordColors.FROST_3, "➜")


def print_success(message: str) -> None:
    """Print a success message."""
    print_message(message, NordColors.GREEN, "✓")


def print_warning(message: str) -> None:
    """Print a warning message."""
    print_message(message, NordColors.YELLOW, "⚠")


def print_error(message: str) -> None:
    """Print an error message."""
    print_message(message, NordColors.RED, "✗")


def print_section(title: str, verb: str = "Installing") -> None:
    """
    Print a section header with a small Pyfiglet title and separator.

    Args:
        title: The section title to display
        verb: Word shown before the title in the plain banner line
    """
    console.print()
    try:
        section_art = pyfiglet.figlet_format(title, font="small")
        console.print(section_art, style=f"bold {NordColors.FROST_2}")
    except pyfiglet.FontNotFound:
        console.print(f"[bold {NordColors.FROST_1}]== {title.upper()} ==[/]")
    console.print(f"[bold {NordColors.FROST_2}]{verb} {title}[/]")
    console.print(f"[{NordColors.FROST_3}]{'─' * 60}[/]")


# ----------------------------------------------------------------
# Command Execution Helpers
# ----------------------------------------------------------------
@dataclass(frozen=True)
class Command:
    """
    An external program invocation.

    Arguments are kept as a list and handed to the OS directly, never
    joined into a shell command line. ``env`` is merged over the
    process environment.
    """

    program: str
    args: Tuple[str, ...] = ()
    env: Optional[Mapping[str, str]] = None

    @property
    def argv(self) -> List[str]:
        return [self.program, *self.args]

    def __str__(self) -> str:
        rendered = shlex.join(self.argv)
        if self.env:
            assignments = " ".join(f"{k}={shlex.quote(v)}" for k, v in self.env.items())
            rendered = f"env {assignments} {rendered}"
        return rendered


def command_exists(name: str, search_path: Optional[str] = None) -> bool:
    """Return True if the command is available in the PATH."""
    return shutil.which(name, path=search_path) is not None


class CommandRunner:
    """Runs commands synchronously and turns non-zero exits into errors."""

    def __init__(self, config: SetupConfig) -> None:
        self.config = config

    def environment(self, command: Command) -> Dict[str, str]:
        env = os.environ.copy()
        env["PATH"] = self.config.path
        env["HOME"] = str(self.config.home)
        if command.env:
            env.update(command.env)
        return env

    def run(self, command: Command) -> str:
        """
        Execute a command and return its combined stdout and stderr.

        Args:
            command: The command to execute

        Returns:
            The captured output

        Raises:
            ExternalCommandFailure: If the command exits non-zero or cannot start
        """
        cmd_str = str(command)
        print_message(
            f"Running: {cmd_str[:80]}{'...' if len(cmd_str) > 80 else ''}",
            NordColors.SNOW_STORM_1,
            "→",
        )
        logger.debug("Executing: %s", cmd_str)

        try:
            result = subprocess.run(
                command.argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                env=self.environment(command),
                check=False,
            )
        except OSError as e:
            logger.debug("Could not start %s: %s", command.program, e)
            raise ExternalCommandFailure(command, str(e), 127) from e

        output = result.stdout or ""
        if output.strip():
            logger.debug("Output of %s:\n%s", command.program, output.rstrip())
        if result.returncode != 0:
            raise ExternalCommandFailure(command, output, result.returncode)
        return output


def can_sudo(runner: CommandRunner) -> bool:
    """
    Check that sudo is installed and that the user can elevate.

    ``sudo -v`` reuses a cached authentication when one exists and
    otherwise prompts for the password. A failure here is not fatal; the
    commands that need root report their own errors later.
    """
    if not command_exists("sudo", runner.config.path):
        logger.warning("sudo is not installed; privileged installs may fail.")
        return False
    try:
        runner.run(Command("sudo", ("-v",)))
    except ExternalCommandFailure as e:
        logger.warning("Unable to obtain sudo privileges: %s", e.output.strip())
        return False
    return True


# ----------------------------------------------------------------
# ~/.zshrc Backup and Editing
# ----------------------------------------------------------------
@dataclass(frozen=True)
class BackupRecord:
    source: Path
    backup: Path
    created: datetime

    @property
    def restore_command(self) -> str:
        return shlex.join(["cp", str(self.backup), str(self.source)])


class ConfigBackup:
    """
    Snapshot of ~/.zshrc taken once per run, before it is first modified.

    Backups are named by the second they were taken, so two runs within
    the same second share a name and the later copy wins.
    """

    def __init__(
        self, config: SetupConfig, clock: Callable[[], datetime] = datetime.now
    ) -> None:
        self.config = config
        self.clock = clock
        self.record: Optional[BackupRecord] = None

    def backup_path(self, when: datetime) -> Path:
        return self.config.backup_dir / f".zshrc.bak_{when.strftime(BACKUP_TIMESTAMP_FORMAT)}"

    def create(self) -> Optional[BackupRecord]:
        if self.record is not None:
            return self.record

        source = self.config.zshrc
        if not source.is_file():
            print_message("No existing .zshrc file found - No backup needed")
            return None

        when = self.clock()
        destination = self.backup_path(when)
        print_step(f"Saving the current {source} file content to {destination}")
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, destination)
        logger.info("Backed up %s to %s", source, destination)
        print_success(f"{source} backed up at {destination}.")
        self.record = BackupRecord(source=source, backup=destination, created=when)
        return self.record


@dataclass(frozen=True)
class LinePattern:
    """
    Matches a line that starts with ``prefix`` and contains ``closer``
    somewhere after it, e.g. ``ZSH_THEME="..."``.
    """

    prefix: str
    closer: str

    def matches(self, line: str) -> bool:
        body = line.rstrip("\r\n")
        return body.startswith(self.prefix) and self.closer in body[len(self.prefix):]


THEME_PATTERN = LinePattern('ZSH_THEME="', '"')
PLUGINS_PATTERN = LinePattern("plugins=(", ")")


class ZshrcEditor:
    """
    Line-level edits to the shell startup file.

    Each edit loads the file, changes whole lines and writes it back
    only when something changed. The caller takes the backup first.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def read_lines(self) -> List[str]:
        if not self.path.is_file():
            return []
        with open(self.path, "r", encoding="utf-8", newline="") as f:
            return f.read().splitlines(keepends=True)

    def write_lines(self, lines: Sequence[str]) -> None:
        with open(self.path, "w", encoding="utf-8", newline="") as f:
            f.write("".join(lines))

    def replace_line(self, pattern: LinePattern, replacement: str) -> int:
        """
        Replace every line matching ``pattern`` with ``replacement``.

        A single match is expected. When nothing matches the file is left
        alone and the line is not inserted.

        Returns:
            Number of lines replaced
        """
        lines = self.read_lines()
        replaced = 0
        changed = False
        for i, line in enumerate(lines):
            if not pattern.matches(line):
                continue
            replaced += 1
            ending = line[len(line.rstrip("\r\n")):]
            new_line = replacement + ending
            if new_line != line:
                lines[i] = new_line
                changed = True

        if replaced == 0:
            logger.warning(
                "No line starting with %s found in %s; left unchanged.",
                pattern.prefix,
                self.path,
            )
        elif replaced > 1:
            logger.warning(
                "%d lines starting with %s found in %s; all were replaced.",
                replaced,
                pattern.prefix,
                self.path,
            )
        if changed:
            self.write_lines(lines)
            logger.info("Set %s in %s", replacement, self.path)
        return replaced

    def contains_any(self, variants: Sequence[str]) -> bool:
        return any(v in line for line in self.read_lines() for v in variants)

    def append_line_unless_present(
        self, line: str, variants: Optional[Sequence[str]] = None
    ) -> bool:
        """
        Append ``line`` unless one of ``variants`` already appears in the file.

        Only these literal spellings are recognised. The file is created
        when it does not exist.

        Returns:
            True if the line was appended
        """
        if self.contains_any(variants or (line,)):
            return False
        lines = self.read_lines()
        if lines and not lines[-1].endswith("\n"):
            lines[-1] += "\n"
        lines.append(line + "\n")
        self.write_lines(lines)
        logger.info("Appended %r to %s", line, self.path)
        return True


# ----------------------------------------------------------------
# Ruby Version Handling
# ----------------------------------------------------------------
def parse_version(version: str) -> Tuple[int, ...]:
    """Split a dotted version like ``3.1.0`` into integer components."""
    if not re.fullmatch(r"\d+(\.\d+)*", version.strip()):
        raise ValueError(f"Invalid version string: {version!r}")
    return tuple(int(part) for part in version.strip().split("."))


def version_satisfies(current: str, minimum: str) -> bool:
    """
    Compare versions component-wise; equal to the minimum satisfies it.

    Args:
        current: Installed version, e.g. "3.0.9"
        minimum: Required version, e.g. "3.1.0"

    Returns:
        True if ``current`` >= ``minimum``
    """
    cur = parse_version(current)
    req = parse_version(minimum)
    width = max(len(cur), len(req))
    return cur + (0,) * (width - len(cur)) >= req + (0,) * (width - len(req))


def ruby_version_from_output(output: str) -> Optional[str]:
    """
    Extract x.y.z from ``ruby -v`` output.

    ``ruby 3.0.6p216 (2023-03-30 ...)`` gives ``3.0.6``; anything after
    the first letter of the version token is dropped.
    """
    tokens = output.split()
    if len(tokens) < 2:
        return None
    version = re.sub(r"[a-zA-Z].*", "", tokens[1])
    if not re.fullmatch(r"\d+(\.\d+)*", version):
        return None
    return version


# ----------------------------------------------------------------
# Install Steps
# ----------------------------------------------------------------
@dataclass
class StepResult:
    name: str
    status: str
    detail: str = ""


@dataclass
class InstallTarget:
    """
    One installable unit: checked, installed when absent, then configured.

    ``configure`` only runs after a fresh install.
    """

    name: str
    is_present: Callable[[], bool]
    install: Callable[[], None]
    configure: Optional[Callable[[], None]] = None
    present_message: str = ""


def ask_yes_no(question: str) -> bool:
    """Ask a y/n question; only 'y' or 'Y' counts as yes."""
    answer = pt_prompt(
        f"{question} (y/n): ",
        style=PtStyle.from_dict({"prompt": f"bold {NordColors.PURPLE}"}),
    )
    return answer.strip() in ("y", "Y")


@dataclass
class SetupContext:
    config: SetupConfig
    runner: CommandRunner
    backup: ConfigBackup
    editor: ZshrcEditor
    confirm: Callable[[str], bool] = ask_yes_no

    def has(self, name: str) -> bool:
        return command_exists(name, self.config.path)

    def run(self, program: str, *args: str, env: Optional[Mapping[str, str]] = None) -> str:
        return self.runner.run(Command(program, tuple(args), env))


class StepInstaller:
    """Base for a group of install targets shown under one section header."""

    title = ""
    verb = "Installing"

    def __init__(self, ctx: SetupContext) -> None:
        self.ctx = ctx
        self.config = ctx.config

    def targets(self) -> List[InstallTarget]:
        return []

    def converge(self) -> List[StepResult]:
        """Configuration applied on every run, after the targets."""
        return []

    def ensure(self, target: InstallTarget) -> StepResult:
        if target.is_present():
            print_success(target.present_message or f"{target.name} is already installed.")
            return StepResult(target.name, "present")

        print_step(f"Installing {target.name}...")
        target.install()
        if target.configure is not None:
            target.configure()
        print_success(f"{target.name} installed.")
        return StepResult(target.name, "installed")

    def run(self) -> List[StepResult]:
        print_section(self.title, self.verb)
        results = []
        for target in self.targets():
            results.append(self.ensure(target))
        results.extend(self.converge())
        return results


class PrerequisitesStep(StepInstaller):
    """Homebrew, zsh, login shell and the ~/.zshrc backup."""

    title = "Preliminary Checks and Configurations"
    verb = "Running"

    def targets(self) -> List[InstallTarget]:
        return [
            InstallTarget(
                "Homebrew",
                lambda: self.ctx.has("brew"),
                self.install_homebrew,
            ),
            InstallTarget("Zsh shell", lambda: self.ctx.has("zsh"), self.install_zsh),
        ]

    def install_homebrew(self) -> None:
        script = self.ctx.run("curl", "-fsSL", HOMEBREW_INSTALL_URL)
        self.ctx.run("/bin/bash", "-c", script, env={"NONINTERACTIVE": "1"})
        # Fresh installs are not on PATH until the shell profile is reloaded
        for bin_dir in reversed(HOMEBREW_BIN_DIRS):
            if os.path.isfile(os.path.join(bin_dir, "brew")):
                self.config.prepend_path(bin_dir)
        self.ctx.run("brew", "update")

    def install_zsh(self) -> None:
        self.ctx.run("brew", "install", "zsh")

    def converge(self) -> List[StepResult]:
        results = [self.ensure_login_shell()]
        record = self.ctx.backup.create()
        if record is None:
            results.append(StepResult("~/.zshrc backup", "skipped", "no existing file"))
        else:
            results.append(StepResult("~/.zshrc backup", "configured", str(record.backup)))
        return results

    def ensure_login_shell(self) -> StepResult:
        if self.config.shell.endswith("zsh"):
            print_success(f"Default login shell is already {self.config.shell}.")
            return StepResult("Login shell", "present", self.config.shell)

        zsh_path = shutil.which("zsh", path=self.config.path) or "/bin/zsh"
        print_step(
            f"Default login shell is not zsh. Configuring zsh as default shell for {self.config.user}..."
        )
        self.ctx.run("chsh", "-s", zsh_path)
        self.config.shell = zsh_path
        return StepResult("Login shell", "configured", zsh_path)


class ShellFrameworkStep(StepInstaller):
    title = "oh-my-zsh"

    def targets(self) -> List[InstallTarget]:
        return [
            InstallTarget(
                "Oh-My-Zsh",
                self.config.oh_my_zsh_dir.is_dir,
                self.install_oh_my_zsh,
            )
        ]

    def install_oh_my_zsh(self) -> None:
        script = self.ctx.run("curl", "-fsSL", OH_MY_ZSH_INSTALL_URL)
        # sh -c SCRIPT "" --unattended: "" fills $0 for the script
        self.ctx.run("sh", "-c", script, "", "--unattended")


class ThemeAndFontsStep(StepInstaller):
    title = "Themes and Fonts"

    def targets(self) -> List[InstallTarget]:
        theme_dir = self.config.themes_dir / "powerlevel10k"
        font_file = self.config.fonts_dir / NERD_FONT_FILE
        return [
            InstallTarget(
                "Powerlevel10k theme",
                theme_dir.is_dir,
                lambda: self.ctx.run(
                    "git", "clone", "--depth=1", POWERLEVEL10K_REPO, str(theme_dir)
                ),
                configure=self.set_theme,
            ),
            InstallTarget(
                "Hack Nerd Font",
                font_file.is_file,
                lambda: self.ctx.run(
                    "brew",
                    "install",
                    "--cask",
                    NERD_FONT_CASK,
                    env={"HOMEBREW_NO_AUTO_UPDATE": "1"},
                ),
            ),
        ]

    def set_theme(self) -> None:
        self.ctx.editor.replace_line(THEME_PATTERN, THEME_LINE)

    def converge(self) -> List[StepResult]:
        print_step("Configuring iTerm2 to use Hack Nerd Font for Non-ASCII Font")
        for key, kind, value in ITERM2_PREFERENCES:
            self.ctx.run("defaults", "write", ITERM2_DOMAIN, key, kind, value)
        return [StepResult("iTerm2 fonts", "configured")]


class PluginsStep(StepInstaller):
    title = "Plugins"

    def targets(self) -> List[InstallTarget]:
        targets = []
        for name, repo in PLUGIN_REPOS.items():
            dest = self.config.plugins_dir / name
            targets.append(
                InstallTarget(
                    name,
                    dest.is_dir,
                    lambda repo=repo, dest=dest: self.ctx.run(
                        "git", "clone", repo, str(dest)
                    ),
                )
            )
        return targets

    def converge(self) -> List[StepResult]:
        # Overwrites the plugin list, including plugins the user added
        self.ctx.editor.replace_line(PLUGINS_PATTERN, PLUGINS_LINE)
        return [StepResult("Plugin list", "configured", " ".join(MANAGED_PLUGINS))]


class RubyVersionGate:
    """
    Makes sure a Ruby at least ``min_ruby_version`` is active before gems
    are installed, switching to an rbenv-managed Ruby when needed.
    """

    def __init__(self, ctx: SetupContext) -> None:
        self.ctx = ctx
        self.config = ctx.config

    def current_version(self) -> Optional[str]:
        if not self.ctx.has("ruby"):
            return None
        return ruby_version_from_output(self.ctx.run("ruby", "-v"))

    def ensure(self) -> bool:
        """
        Returns:
            True if rbenv now provides the active Ruby
        """
        minimum = self.config.min_ruby_version
        current = self.current_version()
        if current is not None and version_satisfies(current, minimum):
            logger.info("Ruby %s satisfies minimum %s", current, minimum)
            return False

        print_warning(
            f"Your current Ruby version, {current or 'none'}, is below the minimum "
            f"required version, {minimum}. Installing a compatible version..."
        )
        if not self.ctx.has("rbenv"):
            self.ctx.run("brew", "install", "rbenv")
            self.ctx.run("brew", "install", "ruby-build")
        self.ctx.editor.append_line_unless_present(RBENV_INIT_LINE)

        self.ctx.run("rbenv", "install", "--skip-existing", minimum)
        self.ctx.run("rbenv", "global", minimum)
        self.ctx.run("rbenv", "rehash")
        self.activate()
        return True

    def activate(self) -> None:
        """Route later commands to rbenv's shims, like `rbenv init` would."""
        root = self.ctx.run("rbenv", "root").strip()
        self.config.prepend_path(os.path.join(root, "shims"))
        logger.info("Using rbenv shims from %s", root)


class ListingUtilityStep(StepInstaller):
    title = "colorls"

    def targets(self) -> List[InstallTarget]:
        return [
            InstallTarget("colorls", lambda: self.ctx.has("colorls"), self.install_colorls)
        ]

    def install_colorls(self) -> None:
        if RubyVersionGate(self.ctx).ensure():
            self.ctx.run("gem", "install", "colorls")
        else:
            self.ctx.run("sudo", "gem", "install", "colorls")

    def converge(self) -> List[StepResult]:
        editor = self.ctx.editor
        if editor.contains_any(ALIAS_VARIANTS):
            return [StepResult("ls alias", "present")]

        if not self.ctx.confirm("Would you like to set up 'ls' alias to use colorls?"):
            print_message("Skipping alias setup...")
            return [StepResult("ls alias", "skipped")]

        print_step(f"Adding alias '{ALIAS_LINE[len('alias '):]}' to {self.config.zshrc}...")
        editor.append_line_unless_present(ALIAS_LINE, ALIAS_VARIANTS)
        return [StepResult("ls alias", "configured")]


STEP_ORDER = [
    PrerequisitesStep,
    ShellFrameworkStep,
    ThemeAndFontsStep,
    PluginsStep,
    ListingUtilityStep,
]


# ----------------------------------------------------------------
# Orchestration
# ----------------------------------------------------------------
class ZshSetup:
    """Runs every step in dependency order, stopping at the first failure."""

    def __init__(
        self,
        config: SetupConfig,
        runner: CommandRunner,
        confirm: Callable[[str], bool] = ask_yes_no,
        backup: Optional[ConfigBackup] = None,
    ) -> None:
        self.config = config
        self.ctx = SetupContext(
            config=config,
            runner=runner,
            backup=backup or ConfigBackup(config),
            editor=ZshrcEditor(config.zshrc),
            confirm=confirm,
        )
        self.results: List[StepResult] = []

    def run(self) -> List[StepResult]:
        can_sudo(self.ctx.runner)
        for step_cls in STEP_ORDER:
            self.results.extend(step_cls(self.ctx).run())
        return self.results

    @property
    def backup_record(self) -> Optional[BackupRecord]:
        return self.ctx.backup.record

    def print_summary(self) -> None:
        status_styles = {
            "installed": f"bold {NordColors.GREEN}",
            "present": NordColors.FROST_2,
            "configured": f"bold {NordColors.FROST_1}",
            "skipped": NordColors.YELLOW,
        }
        table = Table(
            show_header=True,
            header_style=f"bold {NordColors.FROST_1}",
            border_style=NordColors.FROST_3,
            title="[bold]Setup Summary[/]",
            title_justify="center",
            expand=True,
        )
        table.add_column("Component", style=f"bold {NordColors.FROST_2}")
        table.add_column("Status")
        table.add_column("Details", style=NordColors.SNOW_STORM_1)
        for result in self.results:
            table.add_row(
                result.name,
                Text(result.status, style=status_styles.get(result.status, "")),
                result.detail,
            )

        console.print()
        console.print(Panel(table, border_style=NordColors.FROST_1, padding=(1, 2)))
        console.print(f"\n[bold {NordColors.GREEN}]Installation complete! Please restart iTerm2.[/]")

        record = self.backup_record
        if record is not None:
            console.print(
                f"A backup of your original {record.source} file has been created at "
                f"[path]{record.backup}[/path]."
            )
            console.print(f"You can restore it by running: [bold]{record.restore_command}[/]")


# ----------------------------------------------------------------
# Signal Handling and Cleanup
# ----------------------------------------------------------------
def cleanup() -> None:
    logging.shutdown()


def signal_handler(sig: int, frame: Any) -> None:
    """
    Handle process termination signals gracefully.

    Args:
        sig: Signal number
        frame: Current stack frame
    """
    sig_name = signal.Signals(sig).name
    print_warning(f"Process interrupted by {sig_name}")
    logger.error("Interrupted by %s. Exiting.", sig_name)
    sys.exit(128 + sig)


# ----------------------------------------------------------------
# Main Entry Point
# ----------------------------------------------------------------
def main() -> None:
    """Main application entry point with error handling."""
    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, signal_handler)
    atexit.register(cleanup)

    config = SetupConfig.from_environment()
    setup_logging(config)

    try:
        console.print(create_header())
        console.print(
            Align.center(
                f"[{NordColors.SNOW_STORM_1}]Current Time: {datetime.now():%Y-%m-%d %H:%M:%S}[/] | "
                f"[{NordColors.SNOW_STORM_1}]Host: {platform.node()}[/] | "
                f"[{NordColors.SNOW_STORM_1}]User: {config.user}[/]"
            )
        )
        setup = ZshSetup(config, CommandRunner(config))
        setup.run()
        setup.print_summary()
    except ExternalCommandFailure as e:
        logger.debug("Aborting after failed command: %s", e.command)
        error_console.print(f"Error: {e}", markup=False, soft_wrap=True)
        sys.exit(1)
    except KeyboardInterrupt:
        print_warning("Process interrupted by user.")
        sys.exit(130)
    except Exception as e:
        print_error(f"Unexpected error: {e}")
        console.print_exception()
        sys.exit(1)


if __name__ == "__main__":
    main()
