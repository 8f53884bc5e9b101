# Lazy imports to avoid dependency chains at startup
def __getattr__(name):
    if name == "Matcher":
        from ledgermatch.services.matching import Matcher
        return Matcher
    elif name == "PatternMiner":
        from ledgermatch.services.pattern_mining import PatternMiner
        return PatternMiner
    elif name == "PatternCatalog":
        from ledgermatch.services.pattern_store import PatternCatalog
        return PatternCatalog
    elif name == "AutonomousResolver":
        from ledgermatch.services.resolution import AutonomousResolver
        return AutonomousResolver
    elif name == "AdaptiveLearner":
        from ledgermatch.services.learning import AdaptiveLearner
        return AdaptiveLearner
    elif name == "KeywordClassifier":
        from ledgermatch.services.classification import KeywordClassifier
        return KeywordClassifier
    raise AttributeError(f"module 'ledgermatch.services' has no attribute '{name}'")

__all__ = [
    "Matcher",
    "PatternMiner",
    "PatternCatalog",
    "AutonomousResolver",
    "AdaptiveLearner",
    "KeywordClassifier",
]
