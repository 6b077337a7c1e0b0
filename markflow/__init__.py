"""
markflow - Markdown workflows for versioned document collections

Manages collections of markdown documents (job applications, blog posts,
presentations) that move through workflow-defined lifecycle stages and are
rendered into output formats with an external conversion tool.

Architecture:
- Environment Context: storage adapters and layered resource environments
- Configuration Context: project/system discovery and layered configuration
- Collections Context: collection lifecycle engine and collection ids
- Rendering Context: pre-processors and external conversion pipeline
"""

__version__ = "0.1.0"
