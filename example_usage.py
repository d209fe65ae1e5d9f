#!/usr/bin/env python3
"""
Example usage of the notes pipeline without the web server
"""

import sys
from pathlib import Path

# Add src to Python path
sys.path.insert(0, str(Path(__file__).parent / "src"))

from notesmaker.exceptions import NotesError
from notesmaker.models import JobState, NotesRequest
from notesmaker.notes_orchestrator import NotesOrchestrator

def main():
    """Example of how to use the orchestrator directly"""

    print("This example uses the built-in template content.")
    print("To generate with a local LLM (Llama 3 via Ollama) instead:")
    print("1. Install Ollama: https://ollama.ai/")
    print("2. Start Ollama: ollama serve")
    print("3. Pull model: ollama pull llama3")
    print("4. export NOTESMAKER_LLM_PROVIDER=ollama")
    print()

    request = NotesRequest(
        class_grade=11,
        board="FBISE",
        subject="Physics",
        chapter="Vectors and Equilibrium",
    )

    print(f"Generating notes for {request.board} {request.subject} Class {request.class_grade}: {request.chapter}")

    try:
        orchestrator = NotesOrchestrator()
        job_id = orchestrator.generate_notes(request)
        status = orchestrator.get_job_status(job_id)

        if status.state == JobState.COMPLETED:
            notes = orchestrator.get_notes(job_id)
            print(f"✓ Success! Quality score {status.quality_score:.2f} / 10")
            print(f"✓ Generated {notes.metadata.total_topics} topic pages ({notes.metadata.total_words} words)")
            print(f"✓ PDF saved to: {status.pdf_url}")

            # Display the first few topics
            print("\nFirst few topics:")
            for i, page in enumerate(notes.topic_pages()[:3], 1):
                print(f"\n{i}. {page.topic_title}")
                print(f"   • {page.definition[:100]}...")
        else:
            print(f"✗ Job ended in {status.state.value}: {status.error_message or status.message}")

    except NotesError as e:
        print(f"✗ Error: {e.message}")

if __name__ == "__main__":
    main()
