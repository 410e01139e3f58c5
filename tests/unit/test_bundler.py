"""Unit tests for module resolution and the script bundler."""

import sys
from pathlib import Path

import pytest

from bundleforge.core.exceptions import ResolutionError, TranspileError, TypeCheckError
from bundleforge.models.graph import ModuleKind
from bundleforge.services.bundler import (
    ModuleResolver,
    ResolutionPolicy,
    ScriptBundler,
    parse_esbuild_output,
    parse_tsc_output,
    policy_for,
    scan_imports,
)
from bundleforge.services.bundler.engine import EsbuildEngine, manifest_from_metafile
from bundleforge.services.bundler.resolver import mask_source

from conftest import FakeCompiler, FakeEngine


def make_resolver(root, extensions=(".tsx", ".ts", ".js"), glue_dir=None):
    return ModuleResolver(ResolutionPolicy(extensions=extensions, root=root, glue_dir=glue_dir))


class TestScanImports:
    """Tests for import scanning."""

    def test_static_forms(self):
        """Test default, named, namespace, side-effect and re-export imports."""
        source = (
            'import init, { add } from "../pkg/hello_wasm";\n'
            "import * as util from './util';\n"
            "import './side-effect';\n"
            "export { greet } from \"./greet\";\n"
            "import type { Props } from './types';\n"
        )

        specs = [spec for spec, _, _, _ in scan_imports(source)]

        assert specs == ["../pkg/hello_wasm", "./util", "./side-effect", "./greet", "./types"]

    def test_dynamic_import(self):
        """Test dynamic imports are flagged."""
        results = scan_imports("const m = await import('./lazy');\n")

        assert results == [("./lazy", 1, 25, True)]

    def test_positions(self):
        """Test line and column of the specifier."""
        results = scan_imports("\n\nimport { a } from './a';\n")

        assert results == [("./a", 3, 20, False)]

    def test_comments_ignored(self):
        """Test commented-out imports are not scanned."""
        source = (
            "// import './line';\n"
            "/* import './block';\n"
            "   import './block2'; */\n"
            "import './real';\n"
        )

        assert [s for s, _, _, _ in scan_imports(source)] == ["./real"]

    def test_strings_kept(self):
        """Test comment markers inside strings are not treated as comments."""
        source = 'const url = "http://example.com"; import "./a";'

        masked = mask_source(source)

        assert len(masked) == len(source)
        assert masked.endswith('import "   ";')
        assert [s for s, _, _, _ in scan_imports(source)] == ["./a"]

    def test_import_text_inside_strings_ignored(self):
        """Test import-shaped text in string and template literals is not an import."""
        source = (
            "const help = \"usage: import x from './plugin'\";\n"
            "const doc = `export { a } from './nope'`;\n"
            "import './real';\n"
        )

        assert scan_imports(source) == [("./real", 3, 9, False)]

    def test_template_substitution_is_code(self):
        """Test imports inside ${...} of a template literal are still found."""
        source = "const m = `${(await import('./lazy')).name} loaded`;\n"

        assert [(s, d) for s, _, _, d in scan_imports(source)] == [("./lazy", True)]

    def test_regex_literal_with_quote(self):
        """Test a quote inside a regex literal does not hide the comment after it."""
        source = (
            'const q = /["]/g;\n'
            "// import old from './removed'\n"
            "import './real';\n"
        )

        assert [s for s, _, _, _ in scan_imports(source)] == ["./real"]

    def test_division_is_not_regex(self):
        """Test division operators do not swallow the code between them."""
        source = "const r = a / b; import './x'; const s = (c) / d;\n"

        assert [s for s, _, _, _ in scan_imports(source)] == ["./x"]


class TestModuleResolver:
    """Tests for specifier resolution."""

    def test_extension_priority(self, temp_dir):
        """Test the first declared extension that exists wins."""
        (temp_dir / "widget.ts").write_text("")
        (temp_dir / "widget.tsx").write_text("")
        importer = temp_dir / "index.ts"

        node = make_resolver(temp_dir).resolve(importer, "./widget")

        assert node.path == temp_dir / "widget.tsx"
        assert node.kind == ModuleKind.TYPED

    def test_priority_follows_policy(self, temp_dir):
        """Test a different policy order changes the result."""
        (temp_dir / "widget.ts").write_text("")
        (temp_dir / "widget.js").write_text("")

        node = make_resolver(temp_dir, extensions=(".js", ".ts")).resolve(temp_dir / "i.ts", "./widget")

        assert node.path == temp_dir / "widget.js"
        assert node.kind == ModuleKind.PLAIN

    def test_explicit_extension(self, temp_dir):
        """Test an explicit extension is taken verbatim."""
        (temp_dir / "data.ts").write_text("")
        (temp_dir / "data.js").write_text("")

        node = make_resolver(temp_dir).resolve(temp_dir / "i.ts", "./data.js")

        assert node.path == temp_dir / "data.js"

    def test_js_specifier_names_typed_source(self, temp_dir):
        """Test `./util.js` finds `util.ts` when no .js file exists."""
        (temp_dir / "util.ts").write_text("")

        node = make_resolver(temp_dir).resolve(temp_dir / "i.ts", "./util.js")

        assert node.path == temp_dir / "util.ts"

    def test_directory_index(self, temp_dir):
        """Test `<dir>/index<ext>` resolution."""
        (temp_dir / "components").mkdir()
        (temp_dir / "components" / "index.ts").write_text("")

        node = make_resolver(temp_dir).resolve(temp_dir / "i.ts", "./components")

        assert node.path == temp_dir / "components" / "index.ts"

    def test_bare_specifier_is_external(self, temp_dir):
        """Test packages resolve to node_modules and are not traversed."""
        (temp_dir / "node_modules" / "@scope" / "lib").mkdir(parents=True)
        (temp_dir / "src").mkdir()

        node = make_resolver(temp_dir).resolve(temp_dir / "src" / "i.ts", "@scope/lib/sub")

        assert node.kind == ModuleKind.EXTERNAL
        assert node.package == "@scope/lib"

    def test_unresolvable(self, temp_dir):
        """Test a missing module raises ResolutionError with its location."""
        with pytest.raises(ResolutionError) as exc_info:
            make_resolver(temp_dir).resolve(temp_dir / "index.ts", "./missing", line=3, column=18)

        error = exc_info.value
        assert error.specifier == "./missing"
        assert error.file_path == str(temp_dir / "index.ts")
        assert (error.line, error.column) == (3, 18)

    def test_missing_package(self, temp_dir):
        """Test a bare specifier without a package is unresolvable."""
        with pytest.raises(ResolutionError):
            make_resolver(temp_dir).resolve(temp_dir / "index.ts", "left-pad")

    def test_glue_classification(self, temp_dir):
        """Test files in the staging directory are glue nodes."""
        pkg = temp_dir / "pkg"
        pkg.mkdir()
        (pkg / "hello_wasm.js").write_text("")
        resolver = make_resolver(temp_dir, glue_dir=pkg)

        node = resolver.resolve(temp_dir / "index.ts", "./pkg/hello_wasm")

        assert node.kind == ModuleKind.GLUE
        assert resolver.classify(pkg / "hello_wasm.d.ts") == ModuleKind.OTHER


class TestBuildGraph:
    """Tests for walking the import graph."""

    def test_project_graph(self, project):
        """Test the sample entry reaches util and the glue module."""
        pkg = project / "pkg"
        pkg.mkdir()
        (pkg / "hello_wasm.js").write_text("export function add(a, b) { return a + b; }\n")

        graph = make_resolver(project, glue_dir=pkg).build_graph(project / "js" / "index.ts")

        assert graph.typed_files == [project / "js" / "index.ts", project / "js" / "util.ts"]
        assert graph.glue_files == [pkg / "hello_wasm.js"]
        order = graph.topological_order()
        assert order.index(project / "js" / "util.ts") < order.index(project / "js" / "index.ts")

    def test_cycles_are_tolerated(self, temp_dir):
        """Test circular imports still produce a graph."""
        (temp_dir / "a.ts").write_text("import { b } from './b';\nexport const a = 1;\n")
        (temp_dir / "b.ts").write_text("import { a } from './a';\nexport const b = 2;\n")

        graph = make_resolver(temp_dir).build_graph(temp_dir / "a.ts")

        assert len(graph.nodes) == 2
        assert graph.find_cycles()
        assert set(graph.topological_order()) == {temp_dir / "a.ts", temp_dir / "b.ts"}

    def test_dynamic_edges_not_cycles(self, temp_dir):
        """Test a dynamic back edge does not count as a cycle."""
        (temp_dir / "a.ts").write_text("import './b';\n")
        (temp_dir / "b.ts").write_text("export const load = () => import('./a');\n")

        graph = make_resolver(temp_dir).build_graph(temp_dir / "a.ts")

        assert graph.find_cycles() == []

    def test_deep_import_chain(self, temp_dir):
        """Test a chain deeper than the interpreter's recursion limit is ordered."""
        depth = sys.getrecursionlimit() + 200
        for i in range(depth):
            body = f"import './m{i + 1}';\n" if i + 1 < depth else ""
            (temp_dir / f"m{i}.ts").write_text(body + f"export const v{i} = {i};\n")

        graph = make_resolver(temp_dir).build_graph(temp_dir / "m0.ts")
        order = graph.topological_order()

        assert graph.find_cycles() == []
        assert len(order) == depth
        assert order[0] == temp_dir / f"m{depth - 1}.ts"
        assert order[-1] == temp_dir / "m0.ts"

    def test_unresolvable_import_in_graph(self, temp_dir):
        """Test the first unresolvable import aborts resolution."""
        (temp_dir / "a.ts").write_text("import { x } from './nope';\n")

        with pytest.raises(ResolutionError) as exc_info:
            make_resolver(temp_dir).build_graph(temp_dir / "a.ts")

        assert exc_info.value.line == 1


class TestToolOutputParsing:
    """Tests for turning tool diagnostics into typed errors."""

    def test_tsc_type_error(self, temp_dir):
        """Test a TS2xxx diagnostic becomes a TypeCheckError."""
        output = "js/index.ts(4,7): error TS2322: Type 'string' is not assignable to type 'number'.\n"

        errors = parse_tsc_output(output, temp_dir)

        assert len(errors) == 1
        error = errors[0]
        assert isinstance(error, TypeCheckError)
        assert error.code == "TS2322"
        assert error.file_path == str(temp_dir / "js" / "index.ts")
        assert (error.line, error.column) == (4, 7)

    def test_tsc_syntax_error(self, temp_dir):
        """Test a TS1xxx diagnostic becomes a TranspileError."""
        errors = parse_tsc_output("js/a.ts(1,10): error TS1005: ';' expected.\n", temp_dir)

        assert isinstance(errors[0], TranspileError)

    def test_esbuild_errors(self, temp_dir):
        """Test esbuild's multi-line report."""
        output = (
            '✘ [ERROR] Could not resolve "./missing"\n'
            "\n"
            "    js/index.ts:2:22:\n"
            "      2 │ import { x } from \"./missing\";\n"
            "\n"
            "✘ [ERROR] Expected \";\" but found \"}\"\n"
            "\n"
            "    js/util.ts:5:0:\n"
        )

        errors = parse_esbuild_output(output, temp_dir)

        assert isinstance(errors[0], ResolutionError)
        assert errors[0].line == 2
        assert isinstance(errors[1], TranspileError)
        assert errors[1].file_path == str(temp_dir / "js" / "util.ts")

    def test_manifest_from_metafile(self, temp_dir):
        """Test entry outputs and shared chunks are separated."""
        out_dir = temp_dir / "out"
        metafile = {
            "outputs": {
                "out/index.js": {"entryPoint": "js/index.ts"},
                "out/index.js.map": {},
                "out/chunks/lazy-ABC123.js": {},
            }
        }

        manifest, files = manifest_from_metafile(metafile, out_dir, temp_dir, "js/index.ts", "development")

        assert manifest.outputs == {"js/index.ts": ["index.js"]}
        assert manifest.chunks == ["chunks/lazy-ABC123.js"]
        assert Path("index.js.map") in files

    def test_esbuild_command_modes(self, make_target, temp_dir):
        """Test source maps in development and minification in production."""
        engine = EsbuildEngine()
        prod = make_target()
        dev = make_target(mode="development")
        graph = make_resolver(prod.root).build_graph(prod.root / "js" / "util.ts")

        prod_cmd = engine._esbuild_command(Path("esbuild"), graph, prod, temp_dir, temp_dir / "m.json")
        dev_cmd = engine._esbuild_command(Path("esbuild"), graph, dev, temp_dir, temp_dir / "m.json")

        assert "--minify" in prod_cmd and "--sourcemap" not in prod_cmd
        assert "--sourcemap" in dev_cmd and "--minify" not in dev_cmd
        assert "--resolve-extensions=.tsx,.ts,.js" in prod_cmd
        assert "--entry-names=index" in prod_cmd
        assert "--chunk-names=[name]-[hash]" in prod_cmd


@pytest.mark.asyncio
class TestScriptBundler:
    """Tests for the bundler stage with a fake engine."""

    async def test_bundle_includes_glue(self, make_target, temp_dir):
        """Test the glue module is bundled as an ordinary dependency."""
        target = make_target()
        await FakeCompiler().compile(target.crate_path, target.mode, target.staging_path)
        engine = FakeEngine()

        output = await ScriptBundler(engine).bundle(target, temp_dir / "bundle")

        assert engine.check_calls == 1
        assert output.module_count == 3
        text = (temp_dir / "bundle" / "index.js").read_text()
        assert "export function add(a, b)" in text
        assert "greet(String(add(2, 3)))" in text

    async def test_missing_glue_is_resolution_error(self, make_target, temp_dir):
        """Test importing glue that was never compiled fails resolution."""
        target = make_target()

        with pytest.raises(ResolutionError) as exc_info:
            await ScriptBundler(FakeEngine()).bundle(target, temp_dir / "bundle")

        assert exc_info.value.specifier == "../pkg/hello_wasm"

    async def test_type_error_stops_before_emit(self, make_target, temp_dir):
        """Test the engine does not emit when type checking fails."""
        target = make_target()
        await FakeCompiler().compile(target.crate_path, target.mode, target.staging_path)
        engine = FakeEngine(check_error=TypeCheckError(message="bad", file_path="js/util.ts", line=1, column=1))

        with pytest.raises(TypeCheckError):
            await ScriptBundler(engine).bundle(target, temp_dir / "bundle")

        assert engine.bundle_calls == 0

    async def test_entry_without_glue_warns(self, make_target, project, temp_dir):
        """Test an entry that never imports the glue module is reported in the output."""
        (project / "js" / "index.ts").write_text('import { greet } from "./util";\nconsole.log(greet("x"));\n')

        output = await ScriptBundler(FakeEngine()).bundle(make_target(), temp_dir / "bundle")

        assert len(output.warnings) == 1
        assert "glue module" in output.warnings[0]

    async def test_entry_with_glue_has_no_warnings(self, make_target, temp_dir):
        """Test the sample project bundles cleanly."""
        target = make_target()
        await FakeCompiler().compile(target.crate_path, target.mode, target.staging_path)

        output = await ScriptBundler(FakeEngine()).bundle(target, temp_dir / "bundle")

        assert output.warnings == []


class TestResolutionPolicy:
    """Tests for deriving the policy from a build target."""

    def test_policy_for_target(self, make_target):
        """Test the policy mirrors the target's extensions and staging dir."""
        target = make_target(resolve_extensions=[".ts"])

        policy = policy_for(target)

        assert policy.extensions == (".ts",)
        assert policy.glue_dir == target.staging_path
