"""Tests for the purge and CSP build plugins."""

import base64
import hashlib
import tempfile
from pathlib import Path

import pytest

from bundleguard.exceptions import PluginError, ResolutionError
from bundleguard.models import SecurityPolicy
from bundleguard.plugins import (
    CspPlugin,
    PurgeCssPlugin,
    create_csp_plugin,
    create_purge_plugin,
    resolve_content_files,
)
from bundleguard.plugins.csp import compute_digest, parse_attributes, resolve_asset_key
from bundleguard.plugins.purge import (
    extract_words,
    is_selector_used,
    purge_css,
    selector_identifiers,
    split_selectors,
)
from bundleguard.policy import DEFAULT_POLICY, SELF_POLICY


def _sri(content: str, algorithm: str = "sha384") -> str:
    digest = hashlib.new(algorithm, content.encode("utf-8")).digest()
    return f"{algorithm}-{base64.b64encode(digest).decode('ascii')}"


class TestPurgeCss:
    """Test unused rule removal."""

    def test_extract_words(self) -> None:
        """Test the default extractor splits on non-word characters."""
        words = extract_words('<div className="btn btn-primary" id="main_nav">')
        assert {"div", "className", "btn", "btn-primary", "id", "main_nav"} <= words

    def test_unused_class_removed(self) -> None:
        """Test a rule for an unseen class is dropped."""
        css = ".used{color:red}\n.unused{color:blue}"
        assert purge_css(css, {"used"}) == ".used{color:red}"

    def test_selector_list_filtered(self) -> None:
        """Test only the unused selectors of a list are dropped."""
        assert purge_css(".a, .b{margin:0}", {"a"}) == ".a{margin:0}"

    def test_compound_selector_needs_every_identifier(self) -> None:
        """Test a selector is kept only if all its names occur."""
        css = "a > span.icon{display:none}"
        assert purge_css(css, {"a", "span"}) == ""
        assert purge_css(css, {"a", "span", "icon"}) == css

    def test_id_selectors(self) -> None:
        """Test id selectors are checked against content words."""
        assert purge_css("#root{height:100%}", {"root"}) == "#root{height:100%}"
        assert purge_css("#other{height:100%}", {"root"}) == ""

    def test_pseudo_and_attribute_parts_ignored(self) -> None:
        """Test pseudo-classes and attribute selectors do not block a match."""
        css = "button:hover{color:red}\ninput[type=text]::placeholder{color:grey}"
        assert purge_css(css, {"button", "input"}) == css

    def test_universal_and_root_kept(self) -> None:
        """Test selectors with no names are always kept."""
        css = ":root{--accent:#09f}\n*{box-sizing:border-box}"
        assert purge_css(css, set()) == css

    def test_media_query_pruned(self) -> None:
        """Test rules nested in media queries are purged and empty blocks dropped."""
        css = "@media (min-width: 600px){.a{x:y}.b{x:z}}"
        assert purge_css(css, {"a"}) == "@media (min-width: 600px){.a{x:y}}"
        assert purge_css(css, set()) == ""

    def test_keyframes_and_font_face_kept(self) -> None:
        """Test non-style at-rules are left alone."""
        css = (
            "@keyframes spin{from{transform:rotate(0)}to{transform:rotate(360deg)}}\n"
            "@font-face{font-family:Inter;src:url(inter.woff2)}"
        )
        assert purge_css(css, set()) == css

    def test_statement_at_rules_kept(self) -> None:
        """Test @import and @charset statements survive."""
        css = '@charset "utf-8";\n@import url(base.css);'
        assert purge_css(css, set()) == '@charset "utf-8";\n@import url(base.css);'

    def test_comments_stripped(self) -> None:
        """Test comments do not confuse the parser."""
        assert purge_css("/* .unused{} */.used{a:b}", {"used"}) == ".used{a:b}"

    def test_braces_inside_strings(self) -> None:
        """Test braces in string values are not treated as blocks."""
        css = '.quote::before{content:"}"}'
        assert purge_css(css, {"quote"}) == css

    def test_safelist(self) -> None:
        """Test safelisted names are never purged."""
        assert purge_css(".modal-open{overflow:hidden}", set(), ["modal-open"]) == (
            ".modal-open{overflow:hidden}"
        )

    def test_unbalanced_braces(self) -> None:
        """Test a malformed stylesheet raises."""
        with pytest.raises(ValueError, match="Unbalanced braces"):
            purge_css(".a{color:red", {"a"})

    def test_split_selectors_respects_parentheses(self) -> None:
        """Test commas inside functional pseudo-classes do not split."""
        assert split_selectors(".a:is(.b, .c), .d") == [".a:is(.b, .c)", ".d"]

    def test_selector_identifiers(self) -> None:
        """Test names are collected from tags, classes and ids."""
        assert selector_identifiers("ul.nav > li#home a:hover") == {"ul", "nav", "li", "home", "a"}

    def test_is_selector_used(self) -> None:
        """Test the usage check."""
        assert is_selector_used(".App-header", {"App-header"})
        assert not is_selector_used(".App-logo", {"App-header"})


class TestPurgeCssPlugin:
    """Test the purge plugin lifecycle."""

    @pytest.fixture
    def sources(self) -> Path:
        """Create an entry HTML and a source tree."""
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            (root / "public").mkdir()
            (root / "public" / "index.html").write_text(
                "<html><body><div id=root></div></body></html>",
                encoding="utf-8",
            )
            (root / "src" / "components").mkdir(parents=True)
            (root / "src" / "App.js").write_text('<header className="App-header" />', encoding="utf-8")
            (root / "src" / "components" / "Empty.js").write_text("export {}", encoding="utf-8")
            yield root

    def test_resolve_content_files_excludes_directories(self, sources: Path) -> None:
        """Test glob resolution returns files only."""
        files = resolve_content_files(sources / "src", ["**/*"])
        assert files == sorted(files)
        assert set(files) == {
            sources / "src" / "App.js",
            sources / "src" / "components" / "Empty.js",
        }

    def test_resolve_content_files_deduplicates(self, sources: Path) -> None:
        """Test overlapping patterns list each file once."""
        files = resolve_content_files(sources / "src", ["*.js", "**/*.js"])
        assert files.count(sources / "src" / "App.js") == 1
        assert files[0] == sources / "src" / "App.js"

    def test_resolve_missing_directory(self, sources: Path) -> None:
        """Test a missing source tree is a resolution error."""
        with pytest.raises(ResolutionError, match="Source directory not found"):
            resolve_content_files(sources / "nope", ["**/*"])

    def test_resolve_empty_directory(self, sources: Path) -> None:
        """Test an empty tree resolves to no files without failing."""
        (sources / "blank").mkdir()
        assert resolve_content_files(sources / "blank", ["**/*"]) == []

    def test_run_purges_stylesheets_only(self, sources: Path) -> None:
        """Test only CSS assets are rewritten."""
        plugin = create_purge_plugin(
            sources / "public" / "index.html",
            resolve_content_files(sources / "src", ["**/*"]),
        )
        assets = {
            "index.html": "<html></html>",
            "static/css/main.css": ".App-header{color:red}\n.App-logo{height:40vmin}\n#root{margin:0}",
        }
        result = plugin.run(assets)

        assert result["static/css/main.css"] == ".App-header{color:red}\n#root{margin:0}"
        assert result["index.html"] == "<html></html>"
        assert assets["static/css/main.css"].count("App-logo") == 1

    def test_noop_when_no_content_files(self, sources: Path) -> None:
        """Test a plugin without content files leaves stylesheets alone."""
        plugin = create_purge_plugin(sources / "public" / "index.html", [])
        assets = {"main.css": ".anything{color:red}"}

        assert isinstance(plugin, PurgeCssPlugin)
        assert plugin.is_noop
        assert plugin.run(assets) == assets

    def test_unreadable_content_file(self, sources: Path) -> None:
        """Test a content file removed after resolution fails the run."""
        plugin = create_purge_plugin(
            sources / "public" / "index.html",
            [sources / "src" / "Gone.js"],
        )
        with pytest.raises(PluginError) as exc_info:
            plugin.run({"main.css": ".a{}"})
        assert exc_info.value.plugin_name == "purgecss"
        assert exc_info.value.details["stage"] == "purgecss"

    def test_malformed_stylesheet_reports_asset(self, sources: Path) -> None:
        """Test parse failures identify the asset."""
        plugin = create_purge_plugin(sources / "public" / "index.html", [sources / "src" / "App.js"])
        with pytest.raises(PluginError) as exc_info:
            plugin.run({"static/css/broken.css": ".a{color:red"})
        assert exc_info.value.asset_path == "static/css/broken.css"
        assert exc_info.value.details["stage"] == "purgecss"

    def test_describe(self, sources: Path) -> None:
        """Test the serializable description lists scanned paths."""
        html = sources / "public" / "index.html"
        plugin = create_purge_plugin(html, [sources / "src" / "App.js"], ["keep"])
        description = plugin.describe()

        assert description["name"] == "purgecss"
        assert description["options"]["paths"] == [str(html), str(sources / "src" / "App.js")]
        assert description["options"]["safelist"] == ["keep"]


class TestCspPlugin:
    """Test CSP and integrity injection into HTML pages."""

    @pytest.fixture
    def assets(self) -> dict[str, str]:
        """Emitted build with one page, a stylesheet and a script."""
        return {
            "index.html": (
                "<!doctype html><html><head><title>App</title>"
                '<link rel="stylesheet" href="/static/css/main.css">'
                "</head><body>"
                '<script defer src="/static/js/main.js"></script>'
                "<script>window.__ready=true</script>"
                "</body></html>"
            ),
            "static/css/main.css": ".App{margin:0}",
            "static/js/main.js": "console.log('app')",
        }

    def test_factory_is_pure(self) -> None:
        """Test repeated calls give equal plugins and leave the policy alone."""
        before = DEFAULT_POLICY.to_plugin_directives()
        first = create_csp_plugin(DEFAULT_POLICY)
        second = create_csp_plugin(DEFAULT_POLICY)

        assert isinstance(first, CspPlugin)
        assert first == second
        assert DEFAULT_POLICY.to_plugin_directives() == before

    def test_integrity_attributes_added(self, assets: dict[str, str]) -> None:
        """Test same-origin assets get integrity and crossorigin attributes."""
        page = create_csp_plugin(DEFAULT_POLICY).run(assets)["index.html"]

        css_sri = _sri(assets["static/css/main.css"])
        js_sri = _sri(assets["static/js/main.js"])
        assert (
            f'<link rel="stylesheet" href="/static/css/main.css" integrity="{css_sri}" '
            'crossorigin="anonymous">'
        ) in page
        assert (
            f'<script defer src="/static/js/main.js" integrity="{js_sri}" '
            'crossorigin="anonymous"></script>'
        ) in page

    def test_meta_tag_injected_into_head(self, assets: dict[str, str]) -> None:
        """Test the policy meta tag opens the head element."""
        page = create_csp_plugin(DEFAULT_POLICY).run(assets)["index.html"]
        assert page.startswith(
            '<!doctype html><html><head><meta http-equiv="Content-Security-Policy" content="',
        )
        assert "default-src 'none'; base-uri 'self'" in page
        assert "require-trusted-types-for 'script'" in page

    def test_script_hashes_added_to_policy(self, assets: dict[str, str]) -> None:
        """Test external and inline scripts are allowed by hash."""
        page = create_csp_plugin(DEFAULT_POLICY).run(assets)["index.html"]

        js_sri = _sri(assets["static/js/main.js"])
        inline = _sri("window.__ready=true", "sha256")
        assert f"script-src 'strict-dynamic' '{js_sri}' '{inline}'" in page

    def test_inline_style_hashed(self) -> None:
        """Test inline style blocks are allowed by hash."""
        assets = {"index.html": "<html><head><style>body{margin:0}</style></head></html>"}
        page = create_csp_plugin(SELF_POLICY).run(assets)["index.html"]
        assert f"style-src 'self' '{_sri('body{margin:0}', 'sha256')}'" in page

    def test_base_policy_not_mutated(self, assets: dict[str, str]) -> None:
        """Test per-page hashes never leak into the shared policy."""
        plugin = create_csp_plugin(DEFAULT_POLICY)
        plugin.run(assets)

        assert plugin.policy is DEFAULT_POLICY
        assert DEFAULT_POLICY.tokens("script-src") == ("'strict-dynamic'",)

    def test_cross_origin_assets_untouched(self) -> None:
        """Test CDN references are not given integrity attributes."""
        tag = '<script src="https://cdn.example.com/lib.js"></script>'
        assets = {"index.html": f"<html><head></head><body>{tag}</body></html>"}
        page = create_csp_plugin(SELF_POLICY).run(assets)["index.html"]
        assert tag in page

    def test_existing_integrity_kept(self) -> None:
        """Test an integrity attribute already present is not replaced."""
        tag = '<script src="main.js" integrity="sha384-abc"></script>'
        assets = {"index.html": f"<head></head>{tag}", "main.js": "x"}
        page = create_csp_plugin(DEFAULT_POLICY).run(assets)["index.html"]

        assert '<script src="main.js" integrity="sha384-abc" crossorigin="anonymous"></script>' in page
        assert "'sha384-abc'" in page

    def test_existing_meta_replaced(self) -> None:
        """Test a stale policy meta tag is replaced rather than duplicated."""
        assets = {
            "index.html": (
                '<html><head><meta http-equiv="Content-Security-Policy" '
                'content="default-src *"></head></html>'
            ),
        }
        page = create_csp_plugin(SELF_POLICY).run(assets)["index.html"]
        assert page.count("Content-Security-Policy") == 1
        assert "default-src *" not in page

    def test_meta_omits_ignored_directives(self) -> None:
        """Test directives that meta delivery ignores are left out."""
        policy = SecurityPolicy(directives={
            "default-src": "'self'",
            "frame-ancestors": "'none'",
            "report-uri": "/csp-report",
        })
        page = create_csp_plugin(policy).run({"index.html": "<head></head>"})["index.html"]
        assert page == '<head><meta http-equiv="Content-Security-Policy" content="default-src \'self\'"></head>'

    def test_inline_hash_keeps_default_src_sources(self) -> None:
        """Test hashing an inline style does not block linked stylesheets."""
        policy = SecurityPolicy(directives={"default-src": "'self'"})
        assets = {
            "index.html": '<head><link rel="stylesheet" href="main.css"><style>p{}</style></head>',
            "main.css": "p{margin:0}",
        }
        page = create_csp_plugin(policy).run(assets)["index.html"]

        inline = _sri("p{}", "sha256")
        assert f"default-src 'self'; style-src 'self' '{inline}'" in page
        assert "script-src" not in page
        assert policy.tokens("style-src") == ()

    def test_inline_hash_normalizes_line_endings(self) -> None:
        """Test CRLF inline bodies hash as the browser sees them."""
        assets = {"index.html": "<head></head><script>a();\r\nb();\r</script>"}
        page = create_csp_plugin(SELF_POLICY).run(assets)["index.html"]

        normalized = _sri("a();\nb();\n", "sha256")
        raw = _sri("a();\r\nb();\r", "sha256")
        assert f"'{normalized}'" in page
        assert f"'{raw}'" not in page

    def test_page_without_head(self) -> None:
        """Test the meta tag is prepended when there is no head element."""
        page = create_csp_plugin(SELF_POLICY).run({"index.html": "<p>hi</p>"})["index.html"]
        assert page.startswith('<meta http-equiv="Content-Security-Policy"')
        assert page.endswith("<p>hi</p>")

    def test_non_html_assets_untouched(self, assets: dict[str, str]) -> None:
        """Test only pages are rewritten."""
        result = create_csp_plugin(DEFAULT_POLICY).run(assets)
        assert result["static/css/main.css"] == assets["static/css/main.css"]
        assert result["static/js/main.js"] == assets["static/js/main.js"]

    def test_describe_round_trip(self) -> None:
        """Test the plugin's directive representation restores the policy."""
        description = create_csp_plugin(DEFAULT_POLICY).describe()

        assert description["name"] == "csp"
        assert description["options"]["hashAlgorithm"] == "sha384"
        restored = SecurityPolicy.from_plugin_directives(description["options"]["directives"])
        assert restored == DEFAULT_POLICY

    def test_compute_digest(self) -> None:
        """Test digests use the SRI format."""
        assert compute_digest("x", "sha256") == _sri("x", "sha256")

    def test_parse_attributes(self) -> None:
        """Test attribute parsing with mixed quoting and bare flags."""
        attributes = parse_attributes("<script defer src='/a.js' type=module>")
        assert attributes == {"defer": None, "src": "/a.js", "type": "module"}

    def test_resolve_asset_key(self) -> None:
        """Test absolute, relative and external references."""
        assets = {"static/js/main.js": "", "docs/app.js": ""}
        assert resolve_asset_key("/static/js/main.js?v=1", "index.html", assets) == "static/js/main.js"
        assert resolve_asset_key("app.js", "docs/index.html", assets) == "docs/app.js"
        assert resolve_asset_key("https://cdn.example.com/main.js", "index.html", assets) is None
        assert resolve_asset_key("//cdn.example.com/main.js", "index.html", assets) is None
        assert resolve_asset_key("/missing.js", "index.html", assets) is None


class TestStageOrdering:
    """Test why the purge stage must precede the CSP stage."""

    @pytest.fixture
    def content(self) -> Path:
        """Create a single content file using one class."""
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            (root / "index.html").write_text('<div class="used"></div>', encoding="utf-8")
            yield root

    def test_integrity_matches_purged_stylesheet(self, content: Path) -> None:
        """Test purge-then-CSP hashes the stylesheet the browser receives."""
        purge = create_purge_plugin(content / "index.html", [content / "index.html"])
        csp = create_csp_plugin(SELF_POLICY)
        assets = {
            "index.html": '<head><link rel="stylesheet" href="main.css"></head>',
            "main.css": ".used{a:b}\n.unused{c:d}",
        }

        result = csp.run(purge.run(assets))
        assert result["main.css"] == ".used{a:b}"
        assert f'integrity="{_sri(result["main.css"])}"' in result["index.html"]

    def test_reversed_order_breaks_integrity(self, content: Path) -> None:
        """Test CSP-then-purge leaves a digest of bytes that no longer exist."""
        purge = create_purge_plugin(content / "index.html", [content / "index.html"])
        csp = create_csp_plugin(SELF_POLICY)
        assets = {
            "index.html": '<head><link rel="stylesheet" href="main.css"></head>',
            "main.css": ".used{a:b}\n.unused{c:d}",
        }

        result = purge.run(csp.run(assets))
        assert f'integrity="{_sri(result["main.css"])}"' not in result["index.html"]
