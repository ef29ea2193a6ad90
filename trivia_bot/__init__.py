"""
Discord trivia quiz bot backed by the Open Trivia Database.
"""
