"""Online examination portal: question bank, timed exams, auto-grading and monitoring."""
