"""Prompt construction and formatting utilities.

This module handles persona augmentation of system prompts and the
advertisement of routed tools to the model.
"""

from ..types import ToolDescriptor

TOOL_CALL_FORMAT = '{"tool_call": {"name": "tool_name", "parameters": {...}}}'


class PromptBuilder:
    """Constructs system prompts for one agent identity.

    Both methods are pure: the same inputs always give the same text.
    """

    def __init__(
        self,
        name: str,
        expertise: str | None = None,
        personality: str | None = None,
    ):
        """Initialize the prompt builder.

        Args:
            name: Display name the agent introduces itself with.
            expertise: Optional area of expertise.
            personality: Optional approach or tone.
        """
        self.name = name
        self.expertise = expertise
        self.personality = personality

    def augment(self, base_prompt: str) -> str:
        """Prefix the persona ahead of the caller's prompt."""
        lines = [f"You are {self.name}."]
        if self.expertise:
            lines.append(f"Your expertise: {self.expertise}")
        if self.personality:
            lines.append(f"Your approach: {self.personality}")
        return "\n".join(lines) + "\n\n" + base_prompt

    @staticmethod
    def format_tools(tools: list[ToolDescriptor]) -> str:
        """Describe tools and the in-band call format.

        Returns:
            An empty string when there are no tools.
        """
        if not tools:
            return ""

        lines = ["You have access to the following tools:"]
        for tool in tools:
            lines.append(f"- {tool.name}: {tool.description}")
            if tool.parameters:
                lines.append("  Parameters:")
                for param in tool.parameters:
                    required = "required" if param.required else "optional"
                    lines.append(f"    - {param.name} ({param.type}, {required}): {param.description}")
        lines.append("")
        lines.append("To use a tool, respond with a JSON object in the following format:")
        lines.append(TOOL_CALL_FORMAT)
        lines.append("After tool execution, I'll provide the result and you can continue.")
        return "\n".join(lines)

    def build_system_prompt(self, base_prompt: str, tools: list[ToolDescriptor] | None = None) -> str:
        """Augmented prompt followed by the tool section, if any."""
        prompt = self.augment(base_prompt)
        tool_section = self.format_tools(tools or [])
        if tool_section:
            prompt = f"{prompt}\n\n{tool_section}"
        return prompt
