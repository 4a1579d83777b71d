"""Prompt templates for working-memory compression and conversation tagging."""

from textwrap import dedent

SUMMARY_EMOTIONS = (
    "happy",
    "stressed",
    "confused",
    "excited",
    "anxious",
    "sad",
    "calm",
    "frustrated",
    "confident",
)

TAG_TOPICS = (
    "relationship",
    "work",
    "health",
    "family",
    "personal_growth",
    "life_advice",
)

TAG_EMOTIONS = (
    "happy",
    "sad",
    "stressed",
    "confused",
    "excited",
    "angry",
    "anxious",
    "hopeful",
    "calm",
    "frustrated",
    "confident",
)

# Example keywords per topic, shown to the model so it maps "deadline" to work etc.
TAG_TOPIC_HINTS = {
    "relationship": ("dating", "crush", "heartbreak", "marriage", "commitment"),
    "work": ("job", "career", "interview", "promotion", "boss", "deadline"),
    "health": ("stress", "anxiety", "sleep", "exercise", "diet"),
    "family": ("parents", "siblings", "home", "relatives"),
    "personal_growth": ("confidence", "goals", "learning", "hobby", "achievement"),
    "life_advice": ("decision", "advice", "future"),
}


def build_compression_prompt(transcript: str) -> str:
    return dedent(
        """\
        Summarize the last part of this conversation in 2-3 sentences.

        Focus on:
        1. What's the user talking about? (main topic)
        2. What's their emotional state? (mood, feelings)
        3. Any decisions or next steps mentioned?

        Conversation:
        {transcript}

        Provide summary in this exact format:
        TOPIC: [main topic in one phrase]
        EMOTION: [{emotions}]
        SUMMARY: [2-3 sentence summary of key points]"""
    ).format(transcript=transcript, emotions="/".join(SUMMARY_EMOTIONS))


def build_tagging_prompt(transcript: str) -> str:
    hints = "\n".join(
        f"   - {topic}: {', '.join(words)}" for topic, words in TAG_TOPIC_HINTS.items()
    )
    return dedent(
        """\
        Analyze this conversation and identify:

        1. What topics are discussed? (Choose from: {topics})
           - You can select multiple topics if relevant, or none
           - Use the topic names exactly, e.g. "relationship" not "love", "work" not "job stress"
        {hints}

        2. What's the primary emotion? ({emotions})

        3. How intense/important is this conversation? (1-10 scale)
           - 1-3: Casual chat, small talk
           - 4-6: Regular conversation, some depth
           - 7-8: Important topic, emotional depth
           - 9-10: Critical issue, very emotional, urgent

        Return in this EXACT format:
        TAGS: [tag1, tag2, tag3]
        EMOTION: [emotion]
        INTENSITY: [1-10]

        Conversation:
        {transcript}"""
    ).format(
        topics=", ".join(TAG_TOPICS),
        hints=hints,
        emotions=", ".join(TAG_EMOTIONS),
        transcript=transcript,
    )
