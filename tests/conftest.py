"""Test configuration for bundleforge."""

import tempfile
import time
from pathlib import Path

import pytest

from bundleforge.core.config import Config, load_build_target
from bundleforge.core.exceptions import ToolchainError
from bundleforge.models.artifacts import BundleManifest, BundleOutput
from bundleforge.models.graph import ModuleKind
from bundleforge.services.bundler import ScriptBundler, ScriptEngine
from bundleforge.services.compiler import BinaryModuleCompiler, collect_artifact
from bundleforge.services.compiler.service import glue_module_name, read_crate_manifest
from bundleforge.orchestration.pipeline import PipelineCoordinator

CRATE_NAME = "hello-wasm"
GLUE_NAME = "hello_wasm"

CARGO_TOML = f"""\
[package]
name = "{CRATE_NAME}"
version = "0.1.0"
edition = "2021"

[lib]
crate-type = ["cdylib"]

[dependencies]
wasm-bindgen = "0.2"
"""

LIB_RS = """\
use wasm_bindgen::prelude::*;

#[wasm_bindgen]
pub fn add(a: i32, b: i32) -> i32 {
    a + b
}
"""

INDEX_TS = f"""\
import init, {{ add }} from "../pkg/{GLUE_NAME}";
import {{ greet }} from "./util";

await init();
document.body.textContent = greet(String(add(2, 3)));
"""

UTIL_TS = """\
export function greet(name: string): string {
  return `Hello, ${name}`;
}
"""

INDEX_HTML = """\
<!doctype html>
<html>
  <head><title>hello</title></head>
  <body>
    <script type="module" src="./index.js"></script>
  </body>
</html>
"""


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep BUNDLEFORGE_* variables from the developer's shell out of tests."""
    import os

    for name in list(os.environ):
        if name.startswith("BUNDLEFORGE_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests.

    Yields:
        Path: A resolved Path to the temporary directory.
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


@pytest.fixture
def project(temp_dir):
    """A minimal project: cdylib crate, typed entry importing the glue, static dir.

    Returns:
        Path: The project root.
    """
    root = temp_dir / "app"
    (root / "src").mkdir(parents=True)
    (root / "js").mkdir()
    (root / "static" / "img").mkdir(parents=True)

    (root / "Cargo.toml").write_text(CARGO_TOML)
    (root / "src" / "lib.rs").write_text(LIB_RS)
    (root / "js" / "index.ts").write_text(INDEX_TS)
    (root / "js" / "util.ts").write_text(UTIL_TS)
    (root / "static" / "index.html").write_text(INDEX_HTML)
    (root / "static" / "img" / "logo.svg").write_text("<svg xmlns='http://www.w3.org/2000/svg'/>")
    return root


@pytest.fixture
def make_target(project):
    """Factory for build targets rooted at the sample project."""

    def factory(**overrides):
        return load_build_target(root=project, **overrides)

    return factory


@pytest.fixture
def config():
    """Process configuration that ignores the environment."""
    return Config()


class FakeCompiler(BinaryModuleCompiler):
    """Writes a fake wasm payload and glue module into the staging directory."""

    def __init__(self, error=None):
        self.error = error
        self.calls = []
        self.started = []
        self.completed = []
        self.active = 0
        self.max_active = 0

    async def compile(self, crate_dir, mode, staging_dir):
        import asyncio

        self.active += 1
        self.max_active = max(self.max_active, self.active)
        self.started.append(time.monotonic())
        self.calls.append((crate_dir, mode, staging_dir))
        try:
            await asyncio.sleep(0.01)
            if self.error is not None:
                raise self.error
            name = read_crate_manifest(crate_dir)["package"]["name"]
            out_name = glue_module_name(name)
            fingerprint = self.fingerprint(crate_dir, mode)
            staging_dir.mkdir(parents=True, exist_ok=True)
            (staging_dir / f"{out_name}_bg.wasm").write_bytes(b"\0asm\x01\0\0\0" + fingerprint.encode())
            (staging_dir / f"{out_name}.js").write_text(
                "export default async function init() {}\n"
                "export function add(a, b) { return a + b; }\n"
            )
            (staging_dir / f"{out_name}.d.ts").write_text("export function add(a: number, b: number): number;\n")
            artifact = collect_artifact(name, mode, fingerprint, staging_dir)
        finally:
            self.active -= 1
        self.completed.append(time.monotonic())
        return artifact


class FakeEngine(ScriptEngine):
    """Concatenates local modules in dependency order instead of running esbuild."""

    def __init__(self, check_error=None, bundle_error=None, on_bundle=None):
        self.check_error = check_error
        self.bundle_error = bundle_error
        self.on_bundle = on_bundle
        self.check_calls = 0
        self.bundle_calls = 0
        self.bundle_started = []
        self.graphs = []

    async def check(self, graph, target):
        self.check_calls += 1
        if self.check_error is not None:
            raise self.check_error

    async def bundle(self, graph, target, out_dir):
        self.bundle_calls += 1
        self.bundle_started.append(time.monotonic())
        self.graphs.append(graph)
        if self.on_bundle is not None:
            await self.on_bundle(self.bundle_calls)
        if self.bundle_error is not None:
            raise self.bundle_error

        parts = []
        for path in graph.topological_order():
            if graph.nodes[path].kind == ModuleKind.EXTERNAL:
                continue
            parts.append(f"// {path.name}\n{path.read_text()}")
        out_dir.mkdir(parents=True, exist_ok=True)
        (out_dir / target.output_filename).write_text("\n".join(parts))

        entry = target.entry.as_posix()
        manifest = BundleManifest(
            entry=entry,
            outputs={entry: [target.output_filename]},
            mode=target.mode,
        )
        return BundleOutput(
            output_dir=out_dir,
            files=[Path(target.output_filename)],
            manifest=manifest,
            module_count=len(graph.nodes),
        )


@pytest.fixture
def fake_compiler():
    return FakeCompiler()


@pytest.fixture
def fake_engine():
    return FakeEngine()


@pytest.fixture
def make_coordinator(config):
    """Factory for coordinators wired to fakes."""

    def factory(target, compiler=None, engine=None):
        return PipelineCoordinator(
            target,
            compiler=compiler or FakeCompiler(),
            bundler=ScriptBundler(engine or FakeEngine()),
            config=config,
        )

    return factory


def toolchain_failure():
    return ToolchainError(
        message="cannot find value `b` in this scope",
        crate_dir="app",
        returncode=1,
    )
