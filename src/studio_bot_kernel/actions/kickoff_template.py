from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class KickoffTemplateTask:
    template_task_key: str
    title: str
    description: str


@dataclass(frozen=True)
class KickoffTemplate:
    version: str
    tasks: tuple[KickoffTemplateTask, ...]

    def keys(self) -> list[str]:
        return [task.template_task_key for task in self.tasks]


# Keys are persisted in project_template_tasks and must never be renamed or renumbered.
DESIGN_STUDIO_KICKOFF = KickoffTemplate(
    version="design_studio_kickoff/v1",
    tasks=(
        KickoffTemplateTask(
            template_task_key="kickoff_access",
            title="Kickoff: collect materials and access",
            description="Collect access, links, sources and context.\n\n"
            "Output: list of links/access and confirmation that everything opens.",
        ),
        KickoffTemplateTask(
            template_task_key="brief_confirm",
            title="Brief: confirm goals and requirements",
            description="Clarify goals, audience, constraints and deadlines.\n\n"
            "Output: short summary plus open questions and risks.",
        ),
        KickoffTemplateTask(
            template_task_key="research_refs",
            title="Research: references and competitors",
            description="Collect 5-10 references with a short review of what works and what does not.\n\n"
            "Output: table or list with conclusions.",
        ),
        KickoffTemplateTask(
            template_task_key="moodboard",
            title="Moodboard / visual direction",
            description="Define the direction for style, tone and visual patterns.\n\n"
            "Output: moodboard plus 2-3 statements on direction.",
        ),
        KickoffTemplateTask(
            template_task_key="ia_structure",
            title="Information architecture / structure",
            description="Define the structure and key screens or pages.\n\nOutput: map or outline.",
        ),
        KickoffTemplateTask(
            template_task_key="wireframes",
            title="Wireframes for key screens",
            description="Produce baseline wireframes of key screens and flows.\n\n"
            "Output: wireframes plus open questions.",
        ),
        KickoffTemplateTask(
            template_task_key="concept",
            title="Concept: 1-2 options",
            description="Assemble concept options from wireframes and moodboard.\n\n"
            "Output: 1-2 options plus rationale.",
        ),
        KickoffTemplateTask(
            template_task_key="ui_kit",
            title="UI kit / base components",
            description="Assemble the base set of components and styles.\n\n"
            "Output: UI kit ready to scale.",
        ),
        KickoffTemplateTask(
            template_task_key="designs_key",
            title="Designs: key screens (MVP)",
            description="Design key screens to handoff level.\n\nOutput: designs plus comments.",
        ),
        KickoffTemplateTask(
            template_task_key="responsive",
            title="Responsive layouts (if needed)",
            description="Prepare responsive states and breakpoints.\n\nOutput: responsive set plus rules.",
        ),
        KickoffTemplateTask(
            template_task_key="handoff",
            title="Handoff: specification and export",
            description="Prepare the specification, export assets, describe interactions.\n\n"
            "Output: handoff-ready package.",
        ),
        KickoffTemplateTask(
            template_task_key="final_qc",
            title="Final check and delivery",
            description="Check consistency, accessibility and logical links.\n\n"
            "Output: sign-off and delivery.",
        ),
    ),
)
