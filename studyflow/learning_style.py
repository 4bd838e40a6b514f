"""
Learning-style self-assessment.

Thirty static questions, each with one option per style. Answers are tallied
per style and the highest tally is the dominant style.
"""
from typing import Dict, Iterable, List, Mapping, Union

STYLES = ("visual", "auditory", "reading", "kinesthetic")

# (question, (visual, auditory, reading, kinesthetic) option texts)
_QUESTION_TABLE = [
    ("When learning something new, I prefer to:", (
        "See diagrams, charts, or visual demonstrations",
        "Listen to explanations or discussions",
        "Read detailed instructions or texts",
        "Practice hands-on or try it myself")),
    ("When remembering information, I find it easier to recall:", (
        "Pictures, graphs, or visual layouts",
        "Conversations or things I've heard",
        "Written notes or text I've read",
        "Things I've practiced or physically done")),
    ("When giving directions to someone, I would:", (
        "Draw a map or show them visually",
        "Tell them step by step verbally",
        "Write down the directions",
        "Walk with them to show the way")),
    ("When studying for an exam, I prefer to:", (
        "Use flashcards, diagrams, or mind maps",
        "Discuss topics with others or record myself",
        "Read and rewrite notes multiple times",
        "Use practice problems or real examples")),
    ("In a classroom, I learn best when:", (
        "The teacher uses slides, videos, or visual aids",
        "There are discussions and verbal explanations",
        "I can take detailed written notes",
        "There are activities, labs, or hands-on work")),
    ("When I need to concentrate, I:", (
        "Need a clean, organized visual environment",
        "Can work with background music or sounds",
        "Prefer quiet with written materials nearby",
        "Need to move around or use fidget tools")),
    ("When learning a new skill, I:", (
        "Watch demonstrations or video tutorials",
        "Listen to instructions and explanations",
        "Read manuals or step-by-step guides",
        "Jump in and learn by doing")),
    ("When problem-solving, I tend to:", (
        "Visualize the problem and draw it out",
        "Talk through it with others",
        "Write down pros and cons",
        "Try different approaches until something works")),
    ("When taking notes from a lecture, I:", (
        "Draw diagrams or highlight key visual elements",
        "Record the lecture or focus on the speaker’s tone",
        "Write detailed summaries of the content",
        "Note actions to practice later or examples to try")),
    ("When choosing study materials, I prefer:", (
        "Charts, infographics, or color-coded notes",
        "Podcasts, recordings, or group discussions",
        "Textbooks, articles, and handouts",
        "Interactive tools, simulations, or labs")),
    ("When recalling a conversation, I remember:", (
        "How people looked and what I saw",
        "The exact words or tone of voice",
        "Key points I wrote down or read later",
        "Where I was and what I was doing")),
    ("If a device stops working, I first:", (
        "Look for a diagram or image guide",
        "Ask someone to explain how to fix it",
        "Read the manual or troubleshooting steps",
        "Experiment by pressing buttons and trying things")),
    ("When planning a trip, I prefer to:", (
        "Look at maps and photos of destinations",
        "Listen to reviews or ask for recommendations",
        "Read detailed itineraries and blog posts",
        "Go explore and figure it out as I go")),
    ("In group projects, I usually:", (
        "Sketch ideas and organize visuals for the team",
        "Lead discussions and share ideas verbally",
        "Write out plans, tasks, and documentation",
        "Coordinate hands-on tasks and demos")),
    ("When learning vocabulary or definitions, I:", (
        "Use flashcards with images or color cues",
        "Say words aloud or use rhymes",
        "Write definitions repeatedly",
        "Use the words in sentences or activities")),
    ("When following a recipe, I prefer to:", (
        "See step-by-step photos or videos",
        "Have someone talk me through it",
        "Read the written instructions closely",
        "Start cooking and adjust as I go")),
    ("When learning software, I like to:", (
        "Watch interface walkthroughs or GIFs",
        "Listen to a tutorial explanation",
        "Read the documentation or guides",
        "Click around and try features myself")),
    ("In a museum, I spend most time:", (
        "Looking at exhibits and reading visuals",
        "Listening to audio guides or talks",
        "Reading descriptions and placards",
        "Trying interactive displays and activities")),
    ("When organizing information, I like to:", (
        "Create mind maps or flowcharts",
        "Discuss the structure with someone",
        "Outline it in bullet points or lists",
        "Arrange sticky notes and move pieces around")),
    ("When exercising, I follow best when:", (
        "I see a trainer demonstrate the moves",
        "I listen to verbal cues and timing",
        "I read a clear plan or routine",
        "I try the movements and adjust from feel")),
    ("When fixing furniture, I prefer:", (
        "Diagrams and exploded views",
        "Someone talking me through the steps",
        "Written instructions with numbered steps",
        "Assembling it and learning by doing")),
    ("To stay focused while studying, I:", (
        "Use visual timers and color-coding",
        "Play ambient sounds or soft music",
        "Create checklists and written plans",
        "Take movement breaks or change locations")),
    ("When understanding a complex process, I:", (
        "Draw it out step by step",
        "Explain it out loud to myself or others",
        "Read a detailed explanation or article",
        "Recreate the process hands-on")),
    ("When revising for a test, I get the most from:", (
        "Visual summaries and highlighted notes",
        "Study groups and spoken explanations",
        "Reading chapters and rewriting notes",
        "Practice tests and applied questions")),
    ("If I join a new sport or hobby class, I learn best by:", (
        "Watching the instructor demonstrate first",
        "Listening to instructions and tips",
        "Reading rules or a quick guide",
        "Jumping in and practicing the basics")),
    ("When understanding data, I prefer:", (
        "Charts, graphs, and dashboards",
        "Talking through insights with someone",
        "Reading detailed reports",
        "Manipulating the data hands-on")),
    ("When learning history, I remember best:", (
        "Timelines and pictures of events",
        "Storytelling and narrated accounts",
        "Reading primary sources and summaries",
        "Reenactments or building models")),
    ("When troubleshooting code or logic, I:", (
        "Sketch the flow or visualize the logic",
        "Rubber-duck and talk through the problem",
        "Read error logs and documentation",
        "Change code and test iteratively")),
    ("When trying to memorize a process, I:", (
        "Draw a diagram of the steps",
        "Repeat the steps out loud",
        "Write the steps down as a list",
        "Perform the process physically")),
    ("When learning geometry or shapes, I prefer to:", (
        "See models and illustrations",
        "Listen to explanations of properties",
        "Read definitions and theorems",
        "Build or manipulate objects")),
]

QUIZ_QUESTIONS: List[Dict] = [
    {
        "id": i,
        "question": question,
        "options": [{"text": text, "style": style} for text, style in zip(texts, STYLES)],
    }
    for i, (question, texts) in enumerate(_QUESTION_TABLE, start=1)
]

QUESTION_IDS = frozenset(q["id"] for q in QUIZ_QUESTIONS)

PROFILES: Dict[str, Dict] = {
    "visual": {
        "name": "Visual Learner",
        "description": "You learn best through seeing and visual aids",
        "strengths": [
            "Remember information through images and spatial relationships",
            "Prefer charts, diagrams, and visual demonstrations",
            "Think in pictures and visualize concepts",
            "Organize information visually (mind maps, flowcharts)",
        ],
        "study_tips": [
            "Use colorful notes and highlighters",
            "Create mind maps and diagrams",
            "Watch educational videos and demonstrations",
            "Use flashcards with images and charts",
            "Organize your study space visually",
        ],
    },
    "auditory": {
        "name": "Auditory Learner",
        "description": "You learn best through listening and speaking",
        "strengths": [
            "Remember information through sound and rhythm",
            "Prefer lectures, discussions, and verbal explanations",
            "Think out loud and benefit from talking through problems",
            "Good at following spoken directions",
        ],
        "study_tips": [
            "Record lectures and listen to them again",
            "Study with background music",
            "Join study groups and discuss topics",
            "Read notes out loud",
            "Use audio learning resources and podcasts",
        ],
    },
    "reading": {
        "name": "Reading/Writing Learner",
        "description": "You learn best through reading and writing",
        "strengths": [
            "Remember information through written words",
            "Prefer reading textbooks and taking detailed notes",
            "Think through writing and organizing thoughts on paper",
            "Excel at written assignments and reports",
        ],
        "study_tips": [
            "Take comprehensive written notes",
            "Rewrite information in your own words",
            "Use lists, outlines, and written summaries",
            "Read additional materials on topics",
            "Practice writing essays and explanations",
        ],
    },
    "kinesthetic": {
        "name": "Kinesthetic Learner",
        "description": "You learn best through hands-on activities and movement",
        "strengths": [
            "Remember information through physical activity",
            "Prefer hands-on experiments and practical applications",
            "Think while moving and benefit from physical activity",
            "Learn through trial and error",
        ],
        "study_tips": [
            "Use hands-on activities and experiments",
            "Take study breaks to move around",
            "Use manipulatives and physical models",
            "Practice skills through real-world applications",
            "Study while walking or doing light exercise",
        ],
    },
}


def normalize_style(style: str) -> str:
    s = (style or "").strip().lower()
    if s not in STYLES:
        raise ValueError(f"Unknown learning style: {style!r}")
    return s


def score_answers(answers: Union[Iterable[str], Mapping]) -> Dict[str, int]:
    """Tally answers per style.

    ``answers`` is either a sequence of chosen styles or a mapping of
    question id to chosen style. Every style key is present in the result
    and the counts sum to the number of answers.
    """
    if isinstance(answers, Mapping):
        for qid in answers:
            if int(qid) not in QUESTION_IDS:
                raise ValueError(f"Unknown question id: {qid!r}")
        chosen = answers.values()
    else:
        chosen = answers

    scores = {style: 0 for style in STYLES}
    for style in chosen:
        scores[normalize_style(style)] += 1
    return scores


def dominant_style(scores: Mapping[str, int]) -> str:
    # ties go to the style that comes later in STYLES
    best = STYLES[0]
    for style in STYLES[1:]:
        if not scores.get(best, 0) > scores.get(style, 0):
            best = style
    return best


def secondary_styles(scores: Mapping[str, int], dominant: str) -> List[str]:
    others = [s for s in STYLES if s != dominant and scores.get(s, 0) > 0]
    return sorted(others, key=lambda s: scores.get(s, 0), reverse=True)


def summarize(scores: Mapping[str, int]) -> Dict:
    dominant = dominant_style(scores)
    total = sum(scores.get(s, 0) for s in STYLES)
    return {
        "dominant_style": dominant,
        "scores": {s: scores.get(s, 0) for s in STYLES},
        "percentages": {s: round(100.0 * scores.get(s, 0) / total, 1) if total else 0.0 for s in STYLES},
        "secondary_styles": secondary_styles(scores, dominant),
        "profile": PROFILES[dominant],
    }
