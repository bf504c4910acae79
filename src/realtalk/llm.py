from __future__ import annotations
from dataclasses import dataclass
import json
import logging
from typing import Any, Optional, Sequence
from google import genai
from google.genai import types

logger = logging.getLogger(__name__)

LEVEL_GUIDE = {
    "beginner": "Simple words (CEFR A2) and short sentences. Everyday office basics: greetings, simple requests, asking for leave, thanks.",
    "intermediate": "Medium vocabulary (CEFR B1/B2). Common workplace talk: status updates, scheduling, declining politely, coordinating.",
    "advanced": "Professional vocabulary and complex sentences (CEFR C1). Persuading, diplomatic criticism, summarising, proposing.",
}

_SCENARIO_FORMAT = """Output format (strict JSON object, no markdown):
{
  "title": "scenario title in Chinese",
  "scenario": "one-sentence scenario description in English",
  "messages": [
    {"role": "ai", "english": "AI line in English", "chinese": "Chinese translation of the AI line"},
    {"role": "user", "userPrompt": "word-for-word Chinese translation of reference.answer",
     "reference": {"answer": "reference answer in English", "keyPhrases": ["phrase 1", "phrase 2"]}}
  ]
}"""

_SCENARIO_RULES = """Dialogue rules:
1. Generate exactly one dialogue of 4-6 exchanges, alternating AI and user turns.
2. Natural spoken style, like real colleagues. Prefer phrasal verbs (reach out, follow up, wrap up, touch base) and everyday idioms (on the same page, circle back). No niche finance/legal/tech jargon.
3. For every user turn write the English reference answer FIRST, then translate it word for word into Chinese as userPrompt.
   userPrompt must be a translation, never an instruction ("tell him you are busy") or a description ("decline politely").
4. keyPhrases: 2-4 key phrases that actually appear in the dialogue.
5. The dialogue must be coherent, with natural back-and-forth."""

FREETALK_SYSTEM = """From now on you are a native English speaker and a language tutor.
Help the user speak more naturally and fluently. The user is around CET-6 level; speak slightly above that.
1. Always reply in English. If the user mixes Chinese into a sentence, first teach them how to say that part in English, then continue.
2. Talk like a real native speaker, not a textbook.
3. Whenever the user makes a grammar or wording mistake, or sounds unnatural, correct it.
4. When a useful new word or phrase comes up, teach it (Oxford dictionary meanings).
5. Be encouraging.

Return a strict JSON object, no markdown:
{
  "reply": "your English reply",
  "correction": {"hasError": true/false, "userSaid": "...", "shouldSay": "...", "explanation": "short explanation in Chinese"},
  "vocabulary": {"hasNewWord": true/false, "word": "...", "phonetic": "...", "chinese": "...", "englishExplanation": "...", "example": "..."}
}
If nothing needs correcting set correction.hasError to false; if there is no new word set vocabulary.hasNewWord to false."""


@dataclass
class LLMClient:
    api_key: str
    model: str = "gemini-2.5-flash"
    tts_model: str = "gemini-2.5-flash-preview-tts"
    voice: str = "Kore"

    def _client(self):
        return genai.Client(api_key=self.api_key)

    async def _generate(
        self,
        contents: Any,
        *,
        system_instruction: Optional[str] = None,
        json_output: bool = True,
        temperature: Optional[float] = None,
    ) -> str:
        config = types.GenerateContentConfig(
            system_instruction=system_instruction,
            response_mime_type="application/json" if json_output else None,
            temperature=temperature,
        )
        client = self._client()
        resp = await client.aio.models.generate_content(
            model=self.model,
            contents=contents,
            config=config,
        )
        return (resp.text or "").strip()

    # ---------------- scenarios ----------------
    async def generate_random_scenario(self, *, seed: dict, level: str, imitation: float) -> str:
        logger.info(
            "llm_usage: generate_random_scenario model=%s level=%s seed_id=%s imitation=%.2f",
            self.model,
            level,
            seed.get("id"),
            imitation,
        )
        system = f"""You are a professional business English coach.
Based on one specific "seed", generate a unique workplace role-play dialogue that imitates it.
Study the seed's mood, structure, tone and vocabulary depth, then create a new dialogue for a similar task.
Level: {level}. {LEVEL_GUIDE.get(level, "")}

{_SCENARIO_RULES}

{_SCENARIO_FORMAT}"""
        contents = f"""Seed data (imitate the style, do not copy):
- Task: {seed.get("task_description") or seed.get("category") or ""}
- Mood: {seed.get("mood_suggestion") or "Professional"}
- Example dialogue: {json.dumps(seed.get("example") or [], ensure_ascii=False)}

Generate a brand-new dialogue (4-6 exchanges) for this task.
Imitation degree: {imitation:.2f} (0 = fully original, 1 = close imitation, but always add some novelty)."""
        return await self._generate(contents, system_instruction=system, temperature=1.0)

    async def generate_custom_scenario(self, *, topic: str, level: str) -> str:
        logger.info(
            "llm_usage: generate_custom_scenario model=%s level=%s topic_len=%s",
            self.model,
            level,
            len(topic),
        )
        system = f"""You are the RealTalk targeted scenario engine. You do not chat: you only output structured JSON.
The user gives a specific workplace topic they want to practise. Stay strictly on that topic.
Level: {level}. {LEVEL_GUIDE.get(level, "")}

{_SCENARIO_RULES}

{_SCENARIO_FORMAT}"""
        contents = f"""User input: "{topic}"
Requested level: {level}

Generate a scenario for this input following every rule above."""
        return await self._generate(contents, system_instruction=system, temperature=0.9)

    # ---------------- evaluation ----------------
    async def evaluate_answer(
        self,
        *,
        user_text: str,
        reference_text: str,
        user_prompt: str,
        topic: str,
    ) -> str:
        logger.info(
            "llm_usage: evaluate_answer model=%s user_text_len=%s reference_len=%s topic_len=%s",
            self.model,
            len(user_text),
            len(reference_text),
            len(topic),
        )
        system = """You are a spoken-English communication coach with ten years of experience.
Evaluate the student's ACTUAL answer against the reference answer.

Rules:
- Ignore speech-recognition noise: spelling, punctuation and capitalisation are not the student's fault. Never mention them.
- Judge how the sentence sounds when spoken: natural, polite, idiomatic, or Chinglish?
- Compare intent (same meaning as the reference?) and tone (too stiff, too formal, too wordy?).

Output a JSON object:
- "feedback": string in Chinese, at most 200 characters. Go straight to the problems, no filler openings such as "overall good".
  Every suggestion must give its reason (why it is more natural in this context). Say how a native speaker would put it.
- "alternative_expressions": 2-3 short, common, idiomatic phrases (not full sentences, no punctuation),
  e.g. ["Double check", "Give it a second look"]."""
        contents = f"""Topic: {topic}
Student's goal: {user_prompt}
Reference answer: {reference_text}
Student's actual answer: {user_text}"""
        return await self._generate(contents, system_instruction=system, temperature=1.0)

    # ---------------- vocabulary ----------------
    async def enrich_word(self, *, word: str, context: Optional[str] = None) -> str:
        logger.info(
            "llm_usage: enrich_word model=%s word_len=%s has_context=%s",
            self.model,
            len(word),
            bool(context),
        )
        system = """You are an English vocabulary assistant. For the given English word or phrase return a JSON object:
{"word": "...", "phonetic": "IPA", "chinese": "Chinese meaning", "englishExplanation": "...",
 "example": "an English example sentence followed by its Chinese translation"}"""
        contents = f'Explain this word/phrase: "{word}".'
        if context:
            contents += f"\nContext: {context}"
        return await self._generate(contents, system_instruction=system, temperature=0.3)

    # ---------------- speech ----------------
    async def transcribe_audio(self, *, audio: bytes, mime_type: str) -> str:
        logger.info(
            "llm_usage: transcribe_audio model=%s mime_type=%s audio_bytes=%s",
            self.model,
            mime_type,
            len(audio),
        )
        contents = [
            "Transcribe this spoken English recording verbatim. Output only the transcript, no commentary.",
            types.Part.from_bytes(data=audio, mime_type=mime_type),
        ]
        return await self._generate(contents, json_output=False, temperature=0.0)

    async def synthesize_speech(self, *, text: str) -> bytes:
        """Raw 24kHz 16-bit mono PCM for one spoken line."""
        logger.info(
            "llm_usage: synthesize_speech model=%s voice=%s text_len=%s",
            self.tts_model,
            self.voice,
            len(text),
        )
        config = types.GenerateContentConfig(
            response_modalities=["AUDIO"],
            speech_config=types.SpeechConfig(
                voice_config=types.VoiceConfig(
                    prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=self.voice),
                )
            ),
        )
        client = self._client()
        resp = await client.aio.models.generate_content(
            model=self.tts_model,
            contents=f"Say clearly, at a natural office pace: {text}",
            config=config,
        )
        for candidate in resp.candidates or []:
            for part in (candidate.content.parts if candidate.content else None) or []:
                if part.inline_data and part.inline_data.data:
                    return part.inline_data.data
        return b""

    # ---------------- free talk ----------------
    async def freetalk_reply(self, *, message: str, history: Sequence[tuple[str, str]]) -> str:
        """history: (role, text) pairs, role is "user" or "assistant"."""
        logger.info(
            "llm_usage: freetalk_reply model=%s history_len=%s message_len=%s",
            self.model,
            len(history),
            len(message),
        )
        contents = [
            types.Content(
                role="model" if role == "assistant" else "user",
                parts=[types.Part.from_text(text=text)],
            )
            for role, text in history
        ]
        contents.append(types.Content(role="user", parts=[types.Part.from_text(text=message)]))
        return await self._generate(contents, system_instruction=FREETALK_SYSTEM, temperature=0.8)
