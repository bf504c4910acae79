from __future__ import annotations

STRINGS: dict[str, dict[str, str]] = {
    "welcome": {
        "en": "Welcome to RealTalk. Practise workplace English in short role-play dialogues.",
        "zh": "欢迎使用 RealTalk！通过简短的职场角色扮演对话练习英语口语。",
    },
    "choose_lang": {"en": "Choose UI language:", "zh": "选择界面语言："},
    "lang_set": {"en": "Language set.", "zh": "语言已设置。"},
    "choose_level": {"en": "Choose your level:", "zh": "选择你的难度："},
    "level_set": {"en": "Level:", "zh": "难度："},
    "level_beginner": {"en": "Beginner", "zh": "初级"},
    "level_intermediate": {"en": "Intermediate", "zh": "进阶"},
    "level_advanced": {"en": "Advanced", "zh": "高级"},
    "menu_random": {"en": "🎲 Random scenario", "zh": "🎲 随机场景"},
    "menu_custom": {"en": "🎯 Custom topic", "zh": "🎯 定制场景"},
    "menu_freetalk": {"en": "💬 Free talk", "zh": "💬 自由对话"},
    "menu_vocab": {"en": "📒 Vocabulary", "zh": "📒 生词本"},
    "menu_level": {"en": "📶 Level", "zh": "📶 难度"},
    "ask_topic": {
        "en": "Send the workplace topic you want to practise (e.g. asking your boss for a day off).",
        "zh": "请发送你想练习的职场主题（例如：向老板请假）。",
    },
    "generating": {"en": "⏳ Generating scenario…", "zh": "⏳ 正在生成场景…"},
    "ai_unavailable": {
        "en": "AI features are not configured on this bot.",
        "zh": "此机器人未配置 AI 功能。",
    },
    "upstream_failed": {
        "en": "The AI service is unavailable right now. Please try again.",
        "zh": "AI 服务暂时不可用，请重试。",
    },
    "your_turn": {"en": "Your turn. Say this in English:", "zh": "轮到你了，用英语说："},
    "type_or_voice": {
        "en": "Type your answer or send a voice message.",
        "zh": "输入你的回答，或发送语音消息。",
    },
    "reference": {"en": "Reference:", "zh": "参考答案："},
    "key_phrases": {"en": "Key phrases (tap to save):", "zh": "关键短语（点击收藏）："},
    "show_reference": {"en": "💡 Reference", "zh": "💡 参考答案"},
    "next": {"en": "▶️ Next", "zh": "▶️ 下一句"},
    "listen": {"en": "🔊 Listen", "zh": "🔊 播放"},
    "speech_failed": {"en": "Could not read this line aloud. Please try again.", "zh": "语音合成失败，请重试。"},
    "evaluating": {"en": "⏳ Evaluating…", "zh": "⏳ 正在评价…"},
    "your_answer": {"en": "Your answer:", "zh": "你的回答："},
    "feedback": {"en": "Feedback:", "zh": "点评："},
    "alternatives": {"en": "Try also:", "zh": "地道说法："},
    "evaluation_failed": {
        "en": "Evaluation failed. Send your answer again to retry, or go on.",
        "zh": "评价失败。重新发送回答即可重试，也可以继续下一句。",
    },
    "evaluation_pending": {
        "en": "Still evaluating your previous answer. Please wait.",
        "zh": "上一个回答仍在评价中，请稍候。",
    },
    "empty_answer": {"en": "The answer is empty.", "zh": "回答不能为空。"},
    "answer_first": {"en": "Answer this turn first.", "zh": "请先回答这一句。"},
    "scenario_complete": {
        "en": "🎉 Scenario complete! Start another one from the menu.",
        "zh": "🎉 场景练习完成！可以从菜单开始新的练习。",
    },
    "no_session": {"en": "No active scenario. Use the menu to start one.", "zh": "当前没有进行中的场景，请从菜单开始。"},
    "transcribing": {"en": "⏳ Transcribing…", "zh": "⏳ 正在识别语音…"},
    "still_transcribing": {
        "en": "Still transcribing your previous voice message. Please wait.",
        "zh": "上一条语音仍在识别中，请稍候。",
    },
    "transcript": {
        "en": "I heard the following. Confirm it, record again, or send the corrected text:",
        "zh": "识别结果如下。可以确认、重新录音，或直接发送修改后的文字：",
    },
    "confirm": {"en": "✅ Confirm", "zh": "✅ 确认"},
    "rerecord": {"en": "🎙 Record again", "zh": "🎙 重新录音"},
    "rerecord_hint": {"en": "OK, send a new voice message.", "zh": "好的，请重新发送语音。"},
    "mic_denied": {
        "en": "Voice input is not available. Please type your answer instead.",
        "zh": "语音输入不可用，请直接输入文字回答。",
    },
    "transcribe_failed": {
        "en": "Could not transcribe the voice message. Try again or type your answer.",
        "zh": "语音识别失败。请重试或直接输入文字。",
    },
    "nothing_heard": {"en": "I could not hear anything. Please try again.", "zh": "没有识别到内容，请重试。"},
    "saved": {"en": "⭐ Saved:", "zh": "⭐ 已收藏："},
    "removed": {"en": "Removed:", "zh": "已移除："},
    "already_saved": {"en": "Already in your vocabulary:", "zh": "已在生词本中："},
    "save_failed": {"en": "Could not save. Please try again.", "zh": "保存失败，请重试。"},
    "save_word": {"en": "⭐ Save", "zh": "⭐ 收藏"},
    "vocab_empty": {"en": "Your vocabulary is empty.", "zh": "生词本是空的。"},
    "vocab_header": {"en": "Vocabulary", "zh": "生词本"},
    "vocab_all": {"en": "All", "zh": "全部"},
    "vocab_practice": {"en": "Practice", "zh": "场景练习"},
    "vocab_freetalk": {"en": "Free talk", "zh": "自由对话"},
    "vocab_manual": {"en": "Manual", "zh": "手动添加"},
    "vocab_cleared": {"en": "Vocabulary cleared.", "zh": "生词本已清空。"},
    "vocab_unavailable": {
        "en": "Your vocabulary could not be loaded right now. Please try again later.",
        "zh": "生词本暂时无法读取，请稍后再试。",
    },
    "vocab_usage": {
        "en": "Usage: /vocab [practice|freetalk|manual] [search]",
        "zh": "用法：/vocab [practice|freetalk|manual] [搜索词]",
    },
    "save_usage": {"en": "Usage: /save <word or phrase>", "zh": "用法：/save <单词或短语>"},
    "freetalk_start": {
        "en": "Free talk started. Say anything in English (or Chinese). /stop ends the chat.",
        "zh": "自由对话已开始，用英语（或中文）随便聊吧。发送 /stop 结束对话。",
    },
    "freetalk_stopped": {"en": "Free talk ended.", "zh": "自由对话已结束。"},
    "correction": {"en": "✏️ Better:", "zh": "✏️ 更好的说法："},
    "new_word": {"en": "📌 New word:", "zh": "📌 新词："},
    "use_menu": {"en": "Use the menu below.", "zh": "请使用下方菜单。"},
}

def t(key: str, lang: str) -> str:
    return STRINGS.get(key, {}).get(lang, STRINGS.get(key, {}).get("en", key))
