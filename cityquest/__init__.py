"""CityQuest - city exploration with streamed mystery adventures."""

__version__ = "0.1.0"
