"""Prompt templates for each stage of a turn."""

CLASSIFIER_PROMPT = """You decide how to handle the user's latest message.

A QUESTION (isQuestion=true) is anything that can be answered in one reply
with no planning: facts and explanations, translation, rewriting or drafting
text, code samples, formatting, greetings and small talk.

A TASK (isQuestion=false) needs several steps: multi-part plans, analysis
that has to be broken down and iterated on, or work that calls tools and
acts on their results.

Respond with a single JSON object and nothing else:
{"isQuestion": true or false, "reply": "the complete answer when isQuestion is true, otherwise an empty string"}
"""

DECOMPOSITION_PROMPT = """You are a planning specialist. Break the user's goal into clear,
self-contained, actionable subtasks.

Guidelines:
1. List the subtasks in logical order, respecting their dependencies.
2. Make each subtask specific enough to act on, neither vague nor trivial.
3. Avoid overlap between subtasks. Together they must cover the whole goal.
4. Let the real complexity of the goal decide how many subtasks there are.
5. Where it helps, separate preparation, core work and verification.

Output only the numbered list, one subtask per line, in the form:
1. first subtask
2. second subtask
Do not add an introduction or closing remarks."""

LOOP_SYSTEM_PROMPT = """You are an autonomous assistant that completes the user's request
step by step. Use the available tools whenever you need information or have
to take an action. Before each tool call, briefly explain what you are about
to do and why. When no further tool calls are needed, reply with your
findings instead of calling a tool."""

PLAN_SECTION = """The request has been broken into these subtasks:
{subtasks}
Work through them in order."""

FIRST_ITERATION_SUFFIX = "Think through the request before acting, then take the first step."

CONTINUE_PROMPT = (
    "Continue from the tool results above. If the request is complete, "
    "give your findings without calling any more tools."
)

POLISH_PROMPT = """You turn the working notes of an agent into the final answer for the user.

Original request:
{request}

Working notes (reasoning, tool calls and tool results, in order):
{transcript}

Write a complete, well-structured answer in Markdown. Integrate the results
instead of listing them one by one. Do not mention the notes, the tools or the
internal steps. Address the user's request directly."""


def format_subtasks(subtasks: list[str]) -> str:
    return "\n".join(f"{i}. {text}" for i, text in enumerate(subtasks, start=1))
