from collections import Counter
from pathlib import Path

import pytest

from conftest import write
from transform_copilot.cli import command_tree
from transform_copilot.core.guide.checker import check_guides
from transform_copilot.core.guide.markdown import heading_slugs, parse_markdown, slugify

REPO_ROOT = Path(__file__).resolve().parents[1]

BROKEN_GUIDE = """
# Guide

Read [setup](other.md#setup), [nothing](nope.md), [top](#guide) and [gone](#nowhere).
See [the site](https://example.com) and ![diagram](img/missing.png).

```yaml
key: [1, 2
```

```sql
select * from {{ ref('x' }}
```

```sql
{% snapshot snap %}
select * from {{ source('raw', 'customers') }}
{% endsnapshot %}
```

```bash
$ transform-copilot --project-dir . run --select x
transform-copilot deploy
transform-copilot source
transform-copilot source freshness
transform-copilot docs publish
pip install transform-copilot
```
"""


def _codes(report):
    return Counter(f.code for f in report.findings)


def test_slugs():
    assert slugify("Run the project") == "run-the-project"
    assert slugify("`ls` and `--select`") == "ls-and---select"
    assert slugify("What's [new](x.md)?") == "whats-new"
    assert heading_slugs(["Tests", "Tests", "Tests"]) == ["tests", "tests-1", "tests-2"]


def test_parse_markdown_tracks_fences_and_links():
    doc = parse_markdown("# A\n\n~~~yaml\na: 1\n~~~\n\n[x](y.md) `[not](a link)`\n\n[ref]: z.md\n")
    assert [(f.lang, f.start_line, f.end_line, f.body) for f in doc.fences] == [("yaml", 3, 5, "a: 1")]
    assert [(link.target, link.line) for link in doc.links] == [("y.md", 7), ("z.md", 9)]
    assert doc.anchors() == ["a"]


def test_findings(tmp_path):
    guide = write(tmp_path / "guide.md", BROKEN_GUIDE)
    write(tmp_path / "other.md", "# Other\n\n## Setup\n")

    report = check_guides([guide], known_commands=command_tree())

    assert _codes(report) == Counter(
        {"link.missing": 2, "link.anchor": 1, "fence.yaml": 1, "fence.sql": 1, "fence.cli": 3}
    )
    assert not report.ok
    cli = [f for f in report.findings if f.code == "fence.cli"]
    assert [f.line for f in cli] == [22, 23, 25]
    assert "unknown command 'transform-copilot deploy'" in cli[0].message
    assert "needs a subcommand (freshness)" in cli[1].message
    missing = sorted(f.message for f in report.findings if f.code == "link.missing")
    assert missing == ["image target not found: img/missing.png", "link target not found: nope.md"]


def test_cli_lines_are_not_checked_without_a_command_tree(tmp_path):
    guide = write(tmp_path / "guide.md", "```bash\ntransform-copilot deploy\n```\n")
    assert check_guides([guide]).findings == []


def test_unclosed_fence(tmp_path):
    guide = write(tmp_path / "guide.md", "# A\n\n```python\nprint(1)\n")
    report = check_guides([tmp_path])
    assert [(f.code, f.line) for f in report.findings] == [("fence.unclosed", 3)]
    assert report.files == [str(guide)]


def test_root_relative_links(tmp_path):
    write(tmp_path / "docs" / "a.md", "# A\n")
    guide = write(tmp_path / "docs" / "guides" / "b.md", "[a](/docs/a.md#a) [b](/docs/b.md)\n")
    report = check_guides([guide], root=tmp_path)
    assert [f.message for f in report.findings] == ["link target not found: /docs/b.md"]


def test_near_duplicate_guides_warn(tmp_path):
    body = "# Install\n\n" + "Run the installer and follow the prompts.\n" * 20
    write(tmp_path / "a.md", body)
    write(tmp_path / "b.md", body.replace("# Install", "# Setup"))
    write(tmp_path / "c.md", "# Something else entirely\n\nShort text.\n")

    report = check_guides([tmp_path])

    assert [f.code for f in report.findings] == ["guide.duplicate"]
    assert report.findings[0].path.endswith("b.md")
    assert report.ok
    assert report.to_dict()["warning_count"] == 1

    assert check_guides([tmp_path], duplicate_threshold=1.01).findings == []


def test_undecodable_guide_is_reported(tmp_path):
    (tmp_path / "latin1.md").write_bytes(b"# Caf\xe9\n\nok\n")
    write(tmp_path / "fine.md", "# Fine\n\nSee [cafe](latin1.md).\n")
    report = check_guides([tmp_path])

    assert [(Path(f.path).name, f.line, f.code, f.severity) for f in report.findings] == [
        ("latin1.md", 1, "guide.encoding", "error")
    ]
    assert "byte 5" in report.findings[0].message
    assert len(report.files) == 2


def test_missing_path(tmp_path):
    with pytest.raises(FileNotFoundError):
        check_guides([tmp_path / "absent"])


def test_shipped_guide_is_clean():
    report = check_guides([REPO_ROOT / "docs"], known_commands=command_tree(), root=REPO_ROOT)
    assert report.findings == [], [f.to_dict() for f in report.findings]
