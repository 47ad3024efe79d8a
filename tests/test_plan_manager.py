"""
Tests for plan_manager.py: plan file path, skeleton and section maintenance.

Run with: pytest tests/test_plan_manager.py -v
"""

from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from dev_workflow_server.plan_manager import (
    analyze_plan_file,
    capitalize_phase,
    delete_plan_file,
    ensure_plan_file,
    generate_plan_file_guidance,
    get_plan_file_content,
    get_plan_file_info,
    get_plan_file_path,
)
from dev_workflow_server.workflow_loader import load_bundled_workflow


class TestPlanFilePath:
    def test_no_branch(self, project_dir):
        path = get_plan_file_path(str(project_dir), "no-branch")
        assert path == str(project_dir / ".vibe" / "development-plan.md")

    def test_branch_slug(self, project_dir):
        path = Path(get_plan_file_path(str(project_dir), "feature/login"))
        assert path.parent == project_dir / ".vibe"
        prefix, _, digest = path.stem.rpartition("-")
        assert prefix == "development-plan-feature-login"
        assert len(digest) == 6
        int(digest, 16)

    def test_branches_sharing_a_slug_get_separate_files(self, project_dir):
        slashed = get_plan_file_path(str(project_dir), "feature/x")
        dashed = get_plan_file_path(str(project_dir), "feature-x")
        assert slashed != dashed

    def test_deterministic(self, project_dir):
        assert get_plan_file_path(str(project_dir), "main") == get_plan_file_path(str(project_dir), "main")


class TestCapitalizePhase:
    def test_variants(self):
        assert capitalize_phase("design") == "Design"
        assert capitalize_phase("code_review") == "Code Review"
        assert capitalize_phase("artifact-setup") == "Artifact Setup"


class TestEnsurePlanFile:
    def test_creates_skeleton(self, project_dir):
        workflow = load_bundled_workflow("epcc")
        path = get_plan_file_path(str(project_dir), "main")
        ensure_plan_file(path, str(project_dir), "main", workflow)

        content = Path(path).read_text()
        assert content.startswith("# Development Plan: my-project (main branch)")
        assert "*Workflow: epcc*" in content
        assert "## Goal" in content
        for title in ("## Explore", "## Plan", "## Code", "## Commit"):
            assert title in content
        assert content.count("### Phase Entrance Criteria") == 3
        assert content.index("## Commit") < content.index("## Key Decisions") < content.index("## Notes")

    def test_second_call_is_noop(self, project_dir):
        workflow = load_bundled_workflow("bugfix")
        path = get_plan_file_path(str(project_dir), "main")
        ensure_plan_file(path, str(project_dir), "main", workflow)
        first = Path(path).read_text()

        ensure_plan_file(path, str(project_dir), "main", workflow)
        assert Path(path).read_text() == first

    def test_agent_edits_preserved(self, project_dir):
        workflow = load_bundled_workflow("minor")
        path = get_plan_file_path(str(project_dir), "main")
        ensure_plan_file(path, str(project_dir), "main", workflow)

        edited = Path(path).read_text().replace(
            "- [ ] *To be added when this phase becomes active*", "- [x] Read the code", 1
        )
        Path(path).write_text(edited)
        ensure_plan_file(path, str(project_dir), "main", workflow)
        assert Path(path).read_text() == edited

    def test_missing_section_appended_before_key_decisions(self, project_dir):
        path = project_dir / ".vibe" / "development-plan.md"
        path.parent.mkdir(parents=True)
        path.write_text(
            "# My plan\n\n## Explore\nnotes\n\n## Key Decisions\n- use sqlite\n\n## Notes\n"
        )

        ensure_plan_file(str(path), str(project_dir), "no-branch", load_bundled_workflow("minor"))
        content = path.read_text()

        assert content.count("## Explore") == 1
        assert "notes\n" in content
        assert "- use sqlite" in content
        assert content.index("## Implement") < content.index("## Finalize") < content.index("## Key Decisions")

    def test_missing_section_appended_at_end_without_key_decisions(self, project_dir):
        path = project_dir / "plan.md"
        path.write_text("# Free form plan")
        ensure_plan_file(str(path), str(project_dir), "main", load_bundled_workflow("minor"))
        content = path.read_text()
        assert content.startswith("# Free form plan\n")
        assert "## Finalize" in content


class TestPlanFileAccess:
    def test_info_missing(self, project_dir):
        info = get_plan_file_info(str(project_dir / "absent.md"))
        assert info["exists"] is False

    def test_content_placeholder(self, project_dir):
        assert "does not exist yet" in get_plan_file_content(str(project_dir / "absent.md"))

    def test_content_existing(self, project_dir):
        path = project_dir / "plan.md"
        path.write_text("hello")
        assert get_plan_file_content(str(path)) == "hello"
        assert get_plan_file_info(str(path))["content"] == "hello"

    def test_delete(self, project_dir):
        path = project_dir / "plan.md"
        path.write_text("bye")
        assert delete_plan_file(str(path)) is True
        assert not path.exists()
        assert delete_plan_file(str(path)) is False

    def test_guidance_mentions_phase_section(self):
        guidance = generate_plan_file_guidance("code", load_bundled_workflow("epcc"))
        assert "\"Code\"" in guidance
        assert "Key Decisions" in guidance


class TestAnalyzePlanFile:
    def test_skeleton_has_no_tasks(self, project_dir):
        path = get_plan_file_path(str(project_dir), "main")
        ensure_plan_file(path, str(project_dir), "main", load_bundled_workflow("epcc"))
        analysis = analyze_plan_file(Path(path).read_text())
        assert analysis["tasks_total"] == 0
        assert analysis["sections"][:2] == ["Goal", "Explore"]
        assert analysis["sections"][-2:] == ["Key Decisions", "Notes"]

    def test_tasks_and_decisions(self):
        content = (
            "## Code\n"
            "### Phase Entrance Criteria\n"
            "- [x] Plan approved\n"
            "\n"
            "### Tasks\n"
            "- [ ] Write the parser\n"
            "- [x] Add fixtures\n"
            "\n"
            "### Completed\n"
            "- [X] Set up the project\n"
            "\n"
            "## Key Decisions\n"
            "- Use YAML for workflows\n"
        )
        analysis = analyze_plan_file(content)
        assert analysis["active_tasks"] == ["Write the parser"]
        assert analysis["completed_tasks"] == ["Add fixtures", "Set up the project"]
        assert analysis["tasks_completed"] == 2
        assert analysis["key_decisions"] == ["Use YAML for workflows"]
