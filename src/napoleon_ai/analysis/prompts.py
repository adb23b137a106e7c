"""Prompts for the model-backed analysis steps.

Every prompt asks for a single JSON object so providers can be swapped
without changing the parsers.
"""

CLASSIFY_PROMPT = """You analyse business messages for a busy executive.

Classify the message below. Respond with ONLY a JSON object:
{{"sentiment": "positive" | "neutral" | "negative" | "urgent", "topics": ["short-label", ...]}}

Rules:
- "urgent" is reserved for imperative or deadline language, not merely negative tone.
- topics are 1-3 word lowercase labels such as finance, board, legal, hiring, product.
- An empty topics list is fine.

Subject: {subject}
From: {sender}

{content}
"""

EXTRACT_PROMPT = """You extract action items for a busy executive.

List every discrete task the recipient is asked to do in the message below.
Respond with ONLY a JSON object:
{{"action_items": [{{"title": "...", "description": "...",
  "category": "approval" | "review" | "decision" | "meeting" | "response",
  "priority": "low" | "medium" | "high" | "critical",
  "due_date": "ISO-8601 date or null"}}]}}

Rules:
- Use "review" when the kind of request is unclear.
- Only give a due_date when the message states one; never guess.
- An empty list is fine.

Today is {today}.

Subject: {subject}
From: {sender}

{content}
"""

SUMMARY_PROMPT = """Summarise the message below for a busy executive in one or two
sentences, at most {max_length} characters. Respond with ONLY a JSON object:
{{"summary": "..."}}

Subject: {subject}
From: {sender}

{content}
"""
