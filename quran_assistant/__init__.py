"""
Quran Assistant: verse-grounded chat, tafsir discussion and hafalan drills.
"""
__version__ = "0.1.0"
