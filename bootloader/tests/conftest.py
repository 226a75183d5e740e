from __future__ import annotations

import dataclasses
import sys
from collections import abc as cabc
from dataclasses import dataclass, field
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from bootloader._errors import BootloaderError  # noqa: E402
from bootloader._models import (  # noqa: E402
    IAAS,
    AWSSettings,
    CommandResult,
    DirectorState,
    JumpboxState,
    Outputs,
    State,
)
from bootloader._state_store import StateStore  # noqa: E402


@dataclass
class RecordedCall:
    args: list[str]
    cwd: Path
    env: dict[str, str]
    capture: bool


class FakeRunner:
    """Recording stand-in for :class:`bootloader._command.CommandRunner`.

    ``on_run`` may return a :class:`CommandResult` (or ``None`` for success)
    and can write files to simulate the tool's side effects.
    """

    def __init__(
        self,
        on_run: cabc.Callable[[RecordedCall], CommandResult | None] | None = None,
        binary: Path = Path("/usr/local/bin/tool"),
    ) -> None:
        self.calls: list[RecordedCall] = []
        self.on_run = on_run
        self.binary = binary

    def which(self) -> Path:
        return self.binary

    def run(
        self,
        args: cabc.Sequence[str],
        cwd: Path,
        env: cabc.Mapping[str, str] | None = None,
        *,
        capture: bool = False,
    ) -> CommandResult:
        call = RecordedCall(list(args), Path(cwd), dict(env or {}), capture)
        self.calls.append(call)
        result = self.on_run(call) if self.on_run is not None else None
        if result is None:
            return CommandResult(success=True, stdout="", stderr="", return_code=0)
        return result


class RecordingStore(StateStore):
    """State store that records every save and can fail chosen saves.

    ``failures`` maps the zero-based index of a ``set`` call to the error it
    raises; the attempted descriptor is recorded either way.
    """

    def __init__(
        self,
        state_dir: Path,
        failures: cabc.Mapping[int, BootloaderError] | None = None,
    ) -> None:
        super().__init__(state_dir)
        self.saved: list[State] = []
        self.failures = dict(failures or {})

    def set(self, state: State) -> None:
        index = len(self.saved)
        self.saved.append(state)
        if index in self.failures:
            raise self.failures[index]
        super().set(state)


@dataclass
class FakeTerraform:
    """Stand-in for :class:`bootloader._terraform_manager.TerraformManager`."""

    outputs: Outputs = field(default_factory=Outputs)
    applied_tf_state: str = '{"resources": ["applied"]}'
    apply_error: BootloaderError | None = None
    destroy_error: BootloaderError | None = None
    init_error: BootloaderError | None = None
    calls: list[tuple[str, State | None]] = field(default_factory=list)

    def validate_version(self) -> None:
        self.calls.append(("validate_version", None))

    def init(self, state: State) -> None:
        self.calls.append(("init", state))
        if self.init_error is not None:
            raise self.init_error

    def apply(self, state: State) -> State:
        self.calls.append(("apply", state))
        if self.apply_error is not None:
            raise self.apply_error
        return dataclasses.replace(state, tf_state=self.applied_tf_state)

    def destroy(self, state: State) -> State:
        self.calls.append(("destroy", state))
        if self.destroy_error is not None:
            raise self.destroy_error
        return dataclasses.replace(state, tf_state="")

    def get_outputs(self, state: State) -> Outputs:
        self.calls.append(("get_outputs", state))
        return self.outputs

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]


@dataclass
class FakeBosh:
    """Stand-in for :class:`bootloader._bosh_manager.BoshManager`."""

    jumpbox_initialized: bool = False
    director_initialized: bool = False
    errors: dict[str, BootloaderError] = field(default_factory=dict)
    calls: list[tuple[str, State | None]] = field(default_factory=list)

    def _record(self, name: str, state: State | None) -> None:
        self.calls.append((name, state))
        if name in self.errors:
            raise self.errors[name]

    def validate_version(self) -> None:
        self._record("validate_version", None)

    def is_jumpbox_initialized(self, state: State) -> bool:
        return self.jumpbox_initialized

    def initialize_jumpbox(self, state: State) -> None:
        self._record("initialize_jumpbox", state)
        self.jumpbox_initialized = True

    def is_director_initialized(self, state: State) -> bool:
        return self.director_initialized

    def initialize_director(self, state: State, ops_file: str = "") -> None:
        self._record("initialize_director", state)
        self.director_initialized = True

    def create_jumpbox(self, state: State, outputs: Outputs) -> State:
        self._record("create_jumpbox", state)
        jumpbox = JumpboxState(variables="jumpbox: vars", state={"vm": "j"}, url="1.2.3.4:22")
        return dataclasses.replace(state, jumpbox=jumpbox)

    def create_director(self, state: State, outputs: Outputs) -> State:
        self._record("create_director", state)
        director = DirectorState(
            variables="admin_password: pw",
            state={"vm": "d"},
            director_name=f"bosh-{state.env_id}",
            director_address="https://10.0.0.6:25555",
            director_username="admin",
            director_password="pw",
        )
        return dataclasses.replace(state, bosh=director)

    def delete_director(self, state: State, outputs: Outputs) -> State:
        self._record("delete_director", state)
        return dataclasses.replace(state, bosh=DirectorState())

    def delete_jumpbox(self, state: State, outputs: Outputs) -> State:
        self._record("delete_jumpbox", state)
        return dataclasses.replace(state, jumpbox=JumpboxState())

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]


@dataclass
class FakeCloudConfig:
    """Stand-in for :class:`bootloader._cloud_config.CloudConfigManager`."""

    initialize_error: BootloaderError | None = None
    update_error: BootloaderError | None = None
    initialized: list[State] = field(default_factory=list)
    updated: list[State] = field(default_factory=list)

    def initialize(self, state: State) -> None:
        self.initialized.append(state)
        if self.initialize_error is not None:
            raise self.initialize_error

    def update(self, state: State) -> None:
        self.updated.append(state)
        if self.update_error is not None:
            raise self.update_error


@pytest.fixture
def store(tmp_path: Path) -> RecordingStore:
    return RecordingStore(tmp_path / "env")


@pytest.fixture
def make_store(tmp_path: Path) -> cabc.Callable[..., RecordingStore]:
    """Return a factory for stores whose chosen saves fail."""

    def factory(failures: cabc.Mapping[int, BootloaderError] | None = None) -> RecordingStore:
        return RecordingStore(tmp_path / "env", failures)

    return factory


@pytest.fixture
def make_runner() -> type[FakeRunner]:
    return FakeRunner


@pytest.fixture
def terraform() -> FakeTerraform:
    return FakeTerraform()


@pytest.fixture
def bosh() -> FakeBosh:
    return FakeBosh()


@pytest.fixture
def cloud_config() -> FakeCloudConfig:
    return FakeCloudConfig()


@pytest.fixture
def aws_state() -> State:
    """Descriptor of an AWS environment whose networking already exists."""

    return State(
        iaas=IAAS.AWS,
        env_id="bbl-env-lake-2018-01-01t00-00z",
        tf_state='{"resources": ["network"]}',
        aws=AWSSettings(region="us-east-1"),
    )
