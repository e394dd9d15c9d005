from recipe_queue.schema.completion import NoteCompletionCounter, NoteCompletionUnit
from recipe_queue.schema.queue import QueueJob
from recipe_queue.schema.recipes import Note, NoteCategory, NoteImage, NoteStatus, ParsedIngredientLine, ParsedInstructionLine, ParsingPattern, ParsingPatternOccurrence

__all__ = ["Note", "NoteCategory", "NoteCompletionCounter", "NoteCompletionUnit", "NoteImage", "NoteStatus", "ParsedIngredientLine", "ParsedInstructionLine", "ParsingPattern", "ParsingPatternOccurrence", "QueueJob"]
