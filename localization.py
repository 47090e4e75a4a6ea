class Translator:
    def __init__(self) -> None:
        self.language = "en"
        self.translations = {
            "en": {},
            "sv": {
                "Save on finish": "Sparas vid avslut",
                "Saving": "Sparar",
                "Saved": "Sparad",
                "Queued offline": "Köad offline",
                "Failed": "Misslyckades",
                "sets": "set",
                "reps": "reps",
                "weight": "vikt",
                "Cannot begin workout. Update routine targets for: {details}.": (
                    "Kan inte starta passet. Uppdatera rutinens mål för: {details}."
                ),
                "Failed to save target weight.": "Kunde inte spara målvikten.",
                "Failed to finish exercise.": "Kunde inte avsluta övningen.",
                "Failed to skip exercise.": "Kunde inte hoppa över övningen.",
                "Failed to save set changes.": "Kunde inte spara ändringarna i seten.",
                "Failed to start exercise.": "Kunde inte starta övningen.",
                "Failed to end workout.": "Kunde inte avsluta passet.",
                "Failed to refresh workout.": "Kunde inte uppdatera passet.",
                "Select a routine before starting a workout.": "Välj en rutin innan du startar ett pass.",
                "Failed to start workout.": "Kunde inte starta passet.",
                "Failed to cancel workout.": "Kunde inte avbryta passet.",
                "Failed to update set.": "Kunde inte uppdatera setet.",
                "Failed to delete set.": "Kunde inte ta bort setet.",
                "Failed to restore set.": "Kunde inte återställa setet.",
                "Warmup": "Uppvärmning",
            },
        }

    def set_language(self, lang: str) -> None:
        self.language = lang

    def gettext(self, key: str) -> str:
        return self.translations.get(self.language, {}).get(key, key)


translator = Translator()
