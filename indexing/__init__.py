"""
indexing/
---------
Parse markdown knowledge files and write them to the knowledge database.

Modules:
- classify: Path-based document categories
- tables: Markdown table scanning
- section_detect: Heading-based sections
- parsers: Rule, verification, incident, mismatch and correction parsers
- chunk: Chunk construction
- crossref: Cross-reference graph edges
- discover: Corpus file discovery
- staleness: Mtime-based staleness check
- indexer: Indexing orchestration
"""

__version__ = "0.1.0"
