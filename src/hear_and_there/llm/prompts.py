from __future__ import annotations

NARRATION_SYSTEM_PROMPT = (
    "You are a professional tour guide writing scripts that will be read aloud by a text-to-speech voice."
)

CANDIDATE_SYSTEM_PROMPT = (
    "You are a tour-planning assistant. Create walking tours using ONLY real places that exist. "
    "Respond with a JSON array of tour objects and nothing else."
)

SUMMARY_SYSTEM_PROMPT = (
    "You are a knowledgeable local historian. Write factual, engaging overviews of places for visitors. "
    "Return a short summary and a list of key facts."
)


def build_summary_request(place_name: str, context: str) -> str:
    return "\n".join(
        [
            f"Place: {place_name}",
            f"Context: {context}" if context else "Context: none",
            "",
            "Write a 2-3 paragraph summary covering history, character and what a visitor notices today.",
            "Then list 5 to 8 concise key facts (dates, people, landmarks).",
        ]
    )
