"""Prompt templates for page summaries, the knowledge base and the avatar persona."""

from datetime import date

PAGE_SUMMARY_INSTRUCTIONS = """\
You summarize a single web page so it can later be merged into a knowledge base \
about the whole website. Keep every concrete fact: products, services, prices, \
features, policies, contact details, numbers and names. Drop navigation, cookie \
banners and boilerplate. Write plain prose, no preamble.
"""

PAGE_SUMMARY_PROMPT = """\
Website: {source_url}
Page: {page_url}
Title: {title}

{text}

Summarize the page above.
"""

KNOWLEDGE_BASE_INSTRUCTIONS = """\
You are a friendly assistant that creates knowledge bases in natural, \
conversational language. Always write as if explaining to a friend - warm, \
simple, and approachable. Avoid technical jargon and formal corporate speak.
"""

KNOWLEDGE_BASE_PROMPT = """\
You are creating a comprehensive knowledge base for an AI video avatar based on \
summaries of pages scraped from {source_url}.
Current date: {date}

Create a well-structured knowledge base that includes:
1. A friendly introduction to what this website/company is all about
2. The main things they offer (products, services, features)
3. What makes them special or different
4. How people can get help or contact them
5. Any important things people should know (like policies, explained simply)
6. Any other helpful information for someone learning about this company

Use simple language and short sentences. Format with markdown headers and lists, \
but keep the content itself conversational.

Page summaries:

{summaries}
"""

PERSONA_SYSTEM_PROMPT = """\
You are a friendly expert on {label}. Answer questions using only the knowledge \
provided in your context, which was gathered from {sources}. If the answer is not \
in that knowledge, say you don't know rather than guessing. Keep answers short \
and conversational, since you are speaking out loud in a video call.
"""

PERSONA_GREETING = "Hello! I'm here to help you learn about {label}. What would you like to know?"

CONTEXTLESS_CONVERSATION_CONTEXT = """\
You are a helpful assistant in a video call. No website knowledge is available \
for this conversation, so answer from general knowledge and say so when unsure.
"""

CONTEXTLESS_GREETING = "Hello! How can I help you today?"


def format_page_summary_prompt(source_url: str, page_url: str, title: str, text: str) -> str:
    return PAGE_SUMMARY_PROMPT.format(
        source_url=source_url,
        page_url=page_url,
        title=title or "(untitled)",
        text=text,
    )


def format_knowledge_base_prompt(source_url: str, summaries: str) -> str:
    return KNOWLEDGE_BASE_PROMPT.format(
        source_url=source_url,
        date=date.today().isoformat(),
        summaries=summaries,
    )


def format_persona_system_prompt(label: str, source_urls: list[str]) -> str:
    return PERSONA_SYSTEM_PROMPT.format(label=label, sources=", ".join(source_urls))


def format_greeting(label: str) -> str:
    return PERSONA_GREETING.format(label=label)
