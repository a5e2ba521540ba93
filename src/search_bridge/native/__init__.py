"""
The search engine the bridge binds to.

Application code never imports from here. The bridge reaches the engine
only through the flat call table in ``lib``:
- heap: address table owning every engine object
- storage: in-memory and SQLite shards
- query, matcher: query trees, evaluation, match and expansion sets
- text: stemming, term generation, range processors, query parsing
- interfaces: abstract callback interfaces and their trampoline peers
"""
