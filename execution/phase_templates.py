"""Static roadmap skeleton: the eight zero-to-one phases P0-P7.

Each template carries the phase goal, what the user walks away with, the
substep count bounds used to validate LLM output, and a fallback substep
list used when the LLM is unavailable.
"""

import uuid

from execution.roadmap import Phase, Substep

PHASE_TEMPLATES = [
    {
        "phase_number": 0,
        "title": "Define Vision",
        "goal": "Crystallize your idea into a clear, measurable vision.",
        "description": "A one-sentence vision statement and 3 concrete success metrics.",
        "min_substeps": 2,
        "max_substeps": 4,
        "acceptance_criteria": [
            "Vision statement written in one sentence",
            "Three measurable success metrics defined",
            "Target user described",
        ],
        "fallback_substeps": [
            ("Clarify your idea", "Answer clarifying questions about what you want to build and why."),
            ("Identify your target user", "Describe the specific person who will use this first."),
            ("Write the vision statement", "I want to build [WHAT] so that [WHO] can [OUTCOME]."),
            ("Define success metrics", "Pick three numbers that prove the project works."),
        ],
    },
    {
        "phase_number": 1,
        "title": "Build Environment",
        "goal": "Create a professional workflow so you feel like a pro from day one.",
        "description": "A working development environment with all tools installed and tested.",
        "min_substeps": 3,
        "max_substeps": 5,
        "acceptance_criteria": [
            "Essential tools installed",
            "Each tool verified with a hello world check",
            "Project structure created",
        ],
        "fallback_substeps": [
            ("Install essential tools", "Install only the tools this project needs."),
            ("Verify each tool", "Run a hello world check for every installed tool."),
            ("Create the project structure", "Set up folders, version control and a README."),
            ("Document the setup", "Write down the exact steps so you can repeat them."),
        ],
    },
    {
        "phase_number": 2,
        "title": "Core Loop",
        "goal": "Build the smallest possible input, process, output cycle.",
        "description": "A working micro-prototype that demonstrates the core value proposition.",
        "min_substeps": 3,
        "max_substeps": 4,
        "acceptance_criteria": [
            "Core input and output defined",
            "Core transformation implemented",
            "Tested with a real example",
        ],
        "fallback_substeps": [
            ("Define the core input and output", "Decide exactly what goes in and what comes out."),
            ("Implement the core transformation", "Build the one step that turns input into output."),
            ("Test with a real example", "Run the loop end to end with real data."),
        ],
    },
    {
        "phase_number": 3,
        "title": "Layered Expansion",
        "goal": "Add complexity gradually, one feature at a time.",
        "description": "Each layer adds a valuable feature while keeping everything working.",
        "min_substeps": 3,
        "max_substeps": 5,
        "acceptance_criteria": [
            "Highest-value feature identified",
            "Feature integrated without breaking the core loop",
        ],
        "fallback_substeps": [
            ("Pick the highest-value feature", "Choose the single feature users will miss most."),
            ("Plan the integration", "Decide where the feature plugs into the core loop."),
            ("Implement the feature", "Build it and keep the core loop working."),
            ("Test the integration", "Verify old and new behavior together."),
        ],
    },
    {
        "phase_number": 4,
        "title": "Reality Test",
        "goal": "Validate assumptions with real users or stakeholders.",
        "description": "Clear feedback from 3-5 real people and a pivot/proceed decision.",
        "min_substeps": 3,
        "max_substeps": 5,
        "acceptance_criteria": [
            "Test plan and demo prepared",
            "Feedback gathered from 3-5 testers",
            "Proceed, pivot or kill decision recorded",
        ],
        "fallback_substeps": [
            ("Prepare a test plan and demo", "Decide what you want to learn and how to show it."),
            ("Recruit testers", "Find 3-5 people who match your target user."),
            ("Run the tests", "Watch them use it and write down what happens."),
            ("Decide: proceed, pivot or kill", "Turn the feedback into a clear decision."),
        ],
    },
    {
        "phase_number": 5,
        "title": "Polish & Freeze Scope",
        "goal": "Reach launch-ready quality while stopping feature creep.",
        "description": "A stable, polished version ready for public launch.",
        "min_substeps": 3,
        "max_substeps": 4,
        "acceptance_criteria": [
            "Issues triaged",
            "Critical issues fixed",
            "Scope frozen",
        ],
        "fallback_substeps": [
            ("Triage issues", "Sort issues into critical, important and nice-to-have."),
            ("Fix critical and important issues", "Leave nice-to-haves for after launch."),
            ("Run final testing", "Test the whole product one last time."),
            ("Freeze scope", "Certify the build as launch-ready."),
        ],
    },
    {
        "phase_number": 6,
        "title": "Launch",
        "goal": "Release the project publicly with a single clear call-to-action.",
        "description": "Project is live, publicly accessible, and first metrics are tracking.",
        "min_substeps": 3,
        "max_substeps": 5,
        "acceptance_criteria": [
            "Deployed to a public URL",
            "Launch announced",
            "Metrics tracking in place",
        ],
        "fallback_substeps": [
            ("Deploy to a public URL", "Put the project where anyone can reach it."),
            ("Write launch messaging", "One message, one call-to-action."),
            ("Announce in three channels", "Share it where your target users already are."),
            ("Set up metrics tracking", "Track the success metrics from Define Vision."),
        ],
    },
    {
        "phase_number": 7,
        "title": "Reflect & Evolve",
        "goal": "Capture lessons learned and prepare for future growth.",
        "description": "A reflection document and clear roadmap for v2.0 or next project.",
        "min_substeps": 3,
        "max_substeps": 4,
        "acceptance_criteria": [
            "Metrics reviewed against goals",
            "Learnings documented",
            "Next roadmap drafted",
        ],
        "fallback_substeps": [
            ("Review metrics against goals", "Compare what happened with what you expected."),
            ("Document learnings", "Write down wins, challenges and lessons."),
            ("Draft the next roadmap", "Plan v2.0 or your next project."),
        ],
    },
]


def get_template(phase_number: int) -> dict | None:
    """Return the template for a phase number, or None."""
    for template in PHASE_TEMPLATES:
        if template["phase_number"] == phase_number:
            return template
    return None


def fallback_substeps(phase_number: int) -> list[Substep]:
    """Return fresh fallback substeps for a phase, numbered from 1.

    Each substep carries the phase's acceptance criteria so completion
    checks have something to score against without the LLM.
    """
    template = get_template(phase_number)
    if template:
        entries = template["fallback_substeps"]
        criteria = template["acceptance_criteria"]
    else:
        entries = [
            ("Complete the work described", "Work through the phase goal step by step."),
            ("Review and upload your result", "Share what you produced for review."),
        ]
        criteria = ["Phase result produced and shared"]
    return [
        Substep(
            id=str(uuid.uuid4()),
            number=index,
            title=title,
            description=description,
            estimated_minutes=20,
            acceptance_criteria=list(criteria),
        )
        for index, (title, description) in enumerate(entries, start=1)
    ]


def build_roadmap() -> list[Phase]:
    """Create the unexpanded P0-P7 phase list. Only P0 starts unlocked."""
    phases = []
    for template in PHASE_TEMPLATES:
        phases.append(
            Phase(
                id=str(uuid.uuid4()),
                phase_number=template["phase_number"],
                title=template["title"],
                goal=template["goal"],
                description=template["description"],
                acceptance_criteria=list(template["acceptance_criteria"]),
                locked=template["phase_number"] != 0,
            )
        )
    return phases
