import asyncio
import os
from dotenv import load_dotenv

# Import the necessary components
from collab_agents import Agent, Debate, Orchestration, ToolRouter
from collab_agents.clients.openai import OpenAIClient
from collab_agents.clients.together import TogetherClient
from collab_agents.orchestration import CallbackEventSink
from collab_agents.tools import FunctionTool, LocalBackend
from collab_agents.types import ToolParameter

# Load environment variables (API keys)
load_dotenv()


def word_count(text: str) -> int:
    """Example local tool shared by every agent."""
    return len(text.split())


def print_event(event):
    print(f"  .. {event.describe()}")


async def main():
    # 1. Initialize the clients
    # You can mix any providers you have keys for
    together_key = os.getenv("TOGETHER_API_KEY")
    openai_key = os.getenv("OPENAI_API_KEY")
    if not together_key or not openai_key:
        print("Please set TOGETHER_API_KEY and OPENAI_API_KEY in .env")
        return

    llama = TogetherClient(api_key=together_key, model="meta-llama/Meta-Llama-3.1-70B-Instruct-Turbo")
    gpt = OpenAIClient(api_key=openai_key, model="gpt-4o")

    # 2. Share a tool router between the agents
    router = ToolRouter()
    router.register("local", LocalBackend([
        FunctionTool(
            "word_count",
            "Count the words in a text",
            word_count,
            [ToolParameter("text", "string", True, "Text to count")],
        ),
    ]))

    # 3. Build the team
    team = Orchestration(
        "language-debate",
        mode=Debate(max_rounds=3, convergence_threshold=0.6),
        event_sink=CallbackEventSink(print_event),
    )
    team.add_agent(Agent("optimist", llama, name="Optimist", personality="Look for strengths first", tool_router=router))
    team.add_agent(Agent("skeptic", gpt, name="Skeptic", personality="Question every claim", tool_router=router))

    # 4. Run the team
    result = await team.run("Is Python a good first programming language?")

    for record in result.transcript:
        print(f"\n[round {record.round}] {record.display_name}:\n{record.content}")
    print(f"\nConverged score: {result.convergence_score:.2f}, tokens used: {result.total_tokens}")


if __name__ == "__main__":
    asyncio.run(main())
