"""Project configuration models, loaded from relforge.toml at the source root."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from relforge.models.release import ReleaseMatrixEntry

DEFAULT_CARGO_CONFIG_TEMPLATE = """\
[source.crates-io]
replace-with = "vendored-sources"

[source.vendored-sources]
directory = "{vendor_dir}"

[net]
offline = true
"""


class BuildSettings(BaseModel):
    """How the source tree is built into one binary.

    ``artifact_path`` is relative to the source root and may contain
    ``{artifact_name}``.  ``env`` values may contain ``{workdir}``, which is
    replaced by the derivation's work directory (e.g. for path remapping
    compiler flags).
    """

    model_config = ConfigDict(frozen=True)

    command: list[str] = Field(
        default_factory=lambda: ["cargo", "build", "--release", "--locked", "--offline"]
    )
    test_command: list[str] = Field(
        default_factory=lambda: ["cargo", "test", "--locked", "--offline"]
    )
    artifact_path: str = "target/release/{artifact_name}"
    output_dirs: list[str] = Field(default_factory=lambda: ["target", "result"])
    exclude: list[str] = Field(default_factory=lambda: [".git", ".relforge"])
    vendor_dir: str = "vendor"
    config_path: str = ".cargo/config.toml"
    config_template: str = DEFAULT_CARGO_CONFIG_TEMPLATE
    env: dict[str, str] = Field(
        default_factory=lambda: {"RUSTFLAGS": "--remap-path-prefix={workdir}=/build"}
    )
    verify: bool = True
    source_date_epoch: int = 0


class ReleaseSettings(BaseModel):
    """Tag trigger and the static release matrix."""

    model_config = ConfigDict(frozen=True)

    tag_pattern: str = "*"
    matrix: list[ReleaseMatrixEntry] = Field(default_factory=list)


class ProjectConfig(BaseModel):
    """Everything relforge.toml declares about a project."""

    model_config = ConfigDict(frozen=True)

    name: str
    pins: str = "pins.json"
    lockfile: str = "Cargo.lock"
    build: BuildSettings = BuildSettings()
    release: ReleaseSettings = ReleaseSettings()
