"""relforge: reproducible, pinned build-and-release pipeline.

Given a pinned toolchain, a locked dependency set and a tagged source tree,
relforge deterministically builds one binary per target platform and
attaches each to the tag-named release:

  - Source pins (pins.json) are the only external references a build reads
  - Toolchains and packages are fetched once, verified, and cached by hash
  - Dependencies are vendored into an offline mirror before compilation
  - Builds run in a fresh work directory with a from-scratch environment
  - Output binaries are stripped of build-location paths
  - Matrix jobs fan out in parallel and fold into one release report
"""

__version__ = "0.1.0"
__description__ = "Reproducible, pinned build-and-release pipeline for single-binary tools"

from relforge.core.orchestrator import ReleaseOrchestrator
from relforge.core.derivation import BuildDerivation
from relforge.cli.app import app as cli

__all__ = ["ReleaseOrchestrator", "BuildDerivation", "cli", "__version__"]
